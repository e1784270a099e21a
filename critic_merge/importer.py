"""
Revision Import v1.0.0
======================
Builds annotated markdown from an original document and a reviewer's
revised text (as extracted from a word processor):

1. Diff original against revised and render the changes as CriticMarkup.
   Citations, math and cross-references only ever appear in their rendered
   form in the revision, so a change whose old side is nothing but such
   spans keeps the markdown source.
2. Turn visible bracketed notes ("[Jane: check this]") into comment markers.
3. Insert the reviewer's comments after their anchor text.
4. Count the resulting annotations.
"""

import re
from typing import List, Optional, Sequence, Union, Dict, Any

from .annotations import count_annotations
from .comment_anchors import resolve_comment_anchors, insert_placed_comments
from .config_logging import get_logger, get_config, handle_errors, MergeConfig
from .differ import TokenDiffer
from .emitter import AnnotationEmitter
from .models import CommentRecord, ImportResult
from .spans import find_code_regions

logger = get_logger('critic_merge.importer')

__version__ = "1.0.0"

DEFAULT_AUTHOR = 'Reviewer'

# [Name: note] but not citations, links or nested brackets
_VISIBLE_COMMENT = re.compile(r'\[([^\[\]:@\n]{1,29}):\s*([^\[\]@\n]+)\](?!\()')


def convert_visible_comments(text: str) -> str:
    """
    Convert bracketed "[Author: text]" notes into comment markers.

    Code regions are left alone.

    Args:
        text: Markdown text

    Returns:
        Text with notes as {>>Author: text<<}
    """
    out = []
    cursor = 0
    for start, end in find_code_regions(text) + [(len(text), len(text))]:
        out.append(_VISIBLE_COMMENT.sub(r'{>>\1: \2<<}', text[cursor:start]))
        out.append(text[start:end])
        cursor = end
    return ''.join(out)


def _as_records(comments: Sequence[Union[CommentRecord, Dict[str, Any]]], author: str) -> List[CommentRecord]:
    records = []
    for comment in comments:
        record = comment if isinstance(comment, CommentRecord) else CommentRecord.from_dict(comment)
        if not record.author or record.author == 'Unknown':
            record.author = author
        records.append(record)
    return records


@handle_errors(logger)
def import_revision(
    original: str,
    revised: str,
    comments: Optional[Sequence[Union[CommentRecord, Dict[str, Any]]]] = None,
    author: str = DEFAULT_AUTHOR,
    granularity: Optional[str] = None,
    config: Optional[MergeConfig] = None
) -> ImportResult:
    """
    Annotate original with the differences found in revised.

    Args:
        original: Original markdown
        revised: Reviewer's plain text
        comments: Reviewer comments with anchors
        author: Author for comments that carry none
        granularity: 'word' or 'sentence'
        config: Engine configuration

    Returns:
        ImportResult with annotated markdown, stats and unplaced comments
    """
    config = config or get_config()

    with logger.log_operation('import_revision', author=author):
        ops = TokenDiffer(config).diff_texts(original, revised, granularity)
        emitted = AnnotationEmitter(config, keep_protected_source=config.keep_protected_source).emit(ops)

        annotated = convert_visible_comments(emitted.text)

        unplaced: List[CommentRecord] = []
        if comments:
            resolution = resolve_comment_anchors(annotated, _as_records(comments, author), config)
            annotated = insert_placed_comments(annotated, resolution.placed, config)
            unplaced = resolution.unplaced

        stats = count_annotations(annotated, config)

    logger.info(f"Imported revision: {stats['total']} annotations", **stats)
    return ImportResult(annotated=annotated, stats=stats, unplaced_comments=unplaced)
