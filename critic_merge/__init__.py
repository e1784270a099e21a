"""
CriticMerge v1.0.0
==================
Semantic diff and multi-reviewer merge for markdown documents using
CriticMarkup revision markers.

Features:
- Word/sentence diffs that never split citations, math or cross-references
- CriticMarkup rendering, parsing, decisions and stripping
- N-reviewer merge with conflict detection and resumable resolution
- Context-aware placement of word-processor comments
"""

from .annotations import (
    parse_annotations,
    strip_annotations,
    apply_decision,
    apply_decision_in_text,
    set_comment_status,
    count_annotations,
    has_annotations,
    get_track_changes,
    get_comments
)
from .comment_anchors import AnchorResolver, resolve_comment_anchors, insert_comments
from .config_logging import MergeConfig, get_config, reset_config, get_logger
from .differ import TokenDiffer, diff_texts
from .emitter import AnnotationEmitter, EmittedDocument, annotate_diff
from .importer import import_revision
from .merge import (
    extract_changes,
    extract_all_changes,
    detect_conflicts,
    compute_similarity,
    merge_reviewers
)
from .models import (
    ProtectedSpan,
    Token,
    EditOp,
    Annotation,
    Change,
    Conflict,
    CommentAnchor,
    CommentRecord,
    MergeResult,
    ImportResult
)
from .resolver import (
    apply_changes,
    apply_changes_as_annotations,
    apply_conflict_markers,
    build_merged_text,
    format_conflict,
    resolve_conflict,
    ConflictSnapshot,
    save_conflicts,
    load_conflicts,
    clear_conflicts,
    get_unresolved_conflicts,
    resume_merge
)
from .routes import merge_blueprint, create_app
from .spans import tag_protected_spans
from .tokenizer import tokenize, detokenize

__version__ = "1.0.0"
__all__ = [
    'parse_annotations', 'strip_annotations', 'apply_decision', 'apply_decision_in_text',
    'set_comment_status', 'count_annotations', 'has_annotations', 'get_track_changes', 'get_comments',
    'AnchorResolver', 'resolve_comment_anchors', 'insert_comments',
    'MergeConfig', 'get_config', 'reset_config', 'get_logger',
    'TokenDiffer', 'diff_texts',
    'AnnotationEmitter', 'EmittedDocument', 'annotate_diff',
    'import_revision',
    'extract_changes', 'extract_all_changes', 'detect_conflicts', 'compute_similarity', 'merge_reviewers',
    'ProtectedSpan', 'Token', 'EditOp', 'Annotation', 'Change', 'Conflict',
    'CommentAnchor', 'CommentRecord', 'MergeResult', 'ImportResult',
    'apply_changes', 'apply_changes_as_annotations', 'apply_conflict_markers', 'build_merged_text',
    'format_conflict', 'resolve_conflict', 'ConflictSnapshot', 'save_conflicts', 'load_conflicts',
    'clear_conflicts', 'get_unresolved_conflicts', 'resume_merge',
    'merge_blueprint', 'create_app',
    'tag_protected_spans', 'tokenize', 'detokenize'
]
