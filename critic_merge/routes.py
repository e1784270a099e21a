"""
CriticMerge Flask Routes
========================
API endpoints for revision import, annotation handling and multi-reviewer merge.

v1.0.0: Initial implementation
"""

import time
from functools import wraps
from typing import Optional

from flask import Blueprint, Flask, request, jsonify, g, current_app

from .annotations import parse_annotations, strip_annotations, count_annotations
from .config_logging import (
    get_logger, get_config, MergeConfig, StructuredLogger,
    CriticMergeError, ValidationError, VALID_GRANULARITIES
)
from .importer import import_revision
from .merge import merge_reviewers
from .resolver import (
    ConflictSnapshot, save_conflicts, load_conflicts, resume_merge,
    UNRESOLVED_KEEP_BASE, UNRESOLVED_MARKERS
)

logger = get_logger('critic_merge.routes')

# Create blueprint
merge_blueprint = Blueprint('critic_merge', __name__)

SLOW_CALL_SECONDS = 5.0


# =============================================================================
# STANDARDIZED ERROR HANDLING DECORATOR
# =============================================================================

def _error_response(code: str, message: str, status: int):
    return jsonify({
        'success': False,
        'error': {
            'code': code,
            'message': message,
            'correlation_id': getattr(g, 'correlation_id', 'unknown')
        }
    }), status


def handle_merge_errors(f):
    """
    Decorator for standardized API error handling in merge routes.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        start_time = time.time()
        try:
            result = f(*args, **kwargs)

            elapsed = time.time() - start_time
            if elapsed > SLOW_CALL_SECONDS:
                logger.warning(f"Slow merge API call: {f.__name__} took {elapsed:.1f}s")

            return result

        except CriticMergeError as e:
            if e.status_code >= 500:
                logger.error(f"{e.code} in {f.__name__}: {e.message}")
            else:
                logger.warning(f"{e.code} in {f.__name__}: {e.message}")
            return _error_response(e.code, e.message, e.status_code)
        except Exception as e:
            logger.exception(f"Unexpected error in {f.__name__}: {e}")
            return _error_response('INTERNAL_ERROR', 'An unexpected error occurred', 500)

    return decorated


@merge_blueprint.before_request
def assign_correlation_id():
    """Tag every request with a correlation ID for log tracing."""
    g.correlation_id = StructuredLogger.new_correlation_id()


# =============================================================================
# REQUEST HELPERS
# =============================================================================

def _engine_config() -> MergeConfig:
    return current_app.config.get('MERGE_CONFIG') or get_config()


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _require_text(data: dict, key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise ValidationError(f"'{key}' must be a string", field=key)
    return value


def _granularity(data: dict) -> Optional[str]:
    granularity = data.get('granularity')
    if granularity is not None and granularity not in VALID_GRANULARITIES:
        raise ValidationError(f"'granularity' must be one of {VALID_GRANULARITIES}", field='granularity')
    return granularity


def _revisions(data: dict):
    revisions = data.get('revisions')
    if isinstance(revisions, dict):
        pairs = list(revisions.items())
    elif isinstance(revisions, list):
        pairs = []
        for item in revisions:
            if not isinstance(item, dict):
                raise ValidationError("Each revision must be an object with 'name' and 'text'",
                                      field='revisions')
            pairs.append((item.get('name'), item.get('text')))
    else:
        raise ValidationError("'revisions' must be an object or a list", field='revisions')

    if not pairs:
        raise ValidationError("At least one revision is required", field='revisions')
    for name, text in pairs:
        if not isinstance(name, str) or not name or not isinstance(text, str):
            raise ValidationError("Revision names and texts must be non-empty strings", field='revisions')
    return pairs


# =============================================================================
# ROUTES
# =============================================================================

@merge_blueprint.route('/diff', methods=['POST'])
@handle_merge_errors
def diff_documents():
    """
    Annotate an original document with a reviewer's revision.

    Request body:
        { original: str, revised: str, comments?: [...], author?: str, granularity?: str }

    Returns:
        { success: true, annotated, stats, unplaced_comments }
    """
    data = _json_body()
    original = _require_text(data, 'original')
    revised = _require_text(data, 'revised')

    result = import_revision(
        original,
        revised,
        comments=data.get('comments') or None,
        author=data.get('author') or 'Reviewer',
        granularity=_granularity(data),
        config=_engine_config()
    )

    return jsonify({'success': True, **result.to_dict()})


@merge_blueprint.route('/annotations', methods=['POST'])
@handle_merge_errors
def annotations():
    """
    Parse, strip or count annotations in a text.

    Request body:
        { text: str, action?: 'parse' | 'strip' | 'count', keep_comments?: bool }

    Returns:
        parse: { success: true, annotations: [...], count }
        strip: { success: true, text }
        count: { success: true, stats }
    """
    data = _json_body()
    text = _require_text(data, 'text')
    action = data.get('action', 'parse')
    config = _engine_config()

    if action == 'parse':
        parsed = parse_annotations(text, config)
        return jsonify({
            'success': True,
            'annotations': [a.to_dict() for a in parsed],
            'count': len(parsed)
        })
    if action == 'strip':
        return jsonify({
            'success': True,
            'text': strip_annotations(text, keep_comments=bool(data.get('keep_comments')), config=config)
        })
    if action == 'count':
        return jsonify({'success': True, 'stats': count_annotations(text, config)})

    raise ValidationError(f"Unknown action: {action}", field='action')


@merge_blueprint.route('/merge', methods=['POST'])
@handle_merge_errors
def merge_documents():
    """
    Merge several reviewer revisions against one base.

    Request body:
        {
            base: str,
            revisions: { name: text } | [ { name, text } ],
            comments?: [...], annotate?: bool, granularity?: str,
            save_snapshot?: bool
        }

    Returns:
        { success: true, base, merged, conflicts, nonConflicting, stats, snapshot_path? }
    """
    data = _json_body()
    base = _require_text(data, 'base')
    config = _engine_config()

    result = merge_reviewers(
        base,
        _revisions(data),
        comments=data.get('comments') or None,
        annotate=bool(data.get('annotate')),
        granularity=_granularity(data),
        config=config
    )

    response = {'success': True, **result.to_dict()}

    if data.get('save_snapshot') and result.conflicts:
        snapshot = ConflictSnapshot(
            base=base,
            merged=result.merged,
            conflicts=result.conflicts,
            non_conflicting=result.non_conflicting
        )
        response['snapshot_path'] = str(save_conflicts(snapshot, config.snapshot_path))

    return jsonify(response)


@merge_blueprint.route('/resolve', methods=['POST'])
@handle_merge_errors
def resolve():
    """
    Apply conflict choices and rebuild the merged text.

    Uses the snapshot in the request body, or the saved snapshot when absent.

    Request body:
        {
            snapshot?: {...}, choices: { conflict_id: index },
            unresolved?: 'base' | 'markers', save?: bool
        }

    Returns:
        { success: true, merged, outcomes, unresolved: [conflict ids], snapshot }
    """
    data = _json_body()
    config = _engine_config()

    choices = data.get('choices') or {}
    if not isinstance(choices, dict):
        raise ValidationError("'choices' must be an object", field='choices')

    unresolved = data.get('unresolved', UNRESOLVED_KEEP_BASE)
    if unresolved not in (UNRESOLVED_KEEP_BASE, UNRESOLVED_MARKERS):
        raise ValidationError("'unresolved' must be 'base' or 'markers'", field='unresolved')

    if data.get('snapshot') is not None:
        try:
            snapshot = ConflictSnapshot.from_dict(data['snapshot'])
        except (ValueError, KeyError, TypeError) as e:
            raise ValidationError(f"Invalid snapshot: {e}", field='snapshot')
    else:
        snapshot = load_conflicts(config.snapshot_path)
        if snapshot is None:
            raise ValidationError("No saved conflicts to resolve", field='snapshot')

    snapshot, outcomes = resume_merge(snapshot, choices, unresolved=unresolved)

    if data.get('save'):
        save_conflicts(snapshot, config.snapshot_path)

    return jsonify({
        'success': True,
        'merged': snapshot.merged,
        'outcomes': [o.to_dict() for o in outcomes],
        'unresolved': [c.id for c in snapshot.conflicts if not c.is_resolved],
        'snapshot': snapshot.to_dict()
    })


# =============================================================================
# APP FACTORY
# =============================================================================

def create_app(config: Optional[MergeConfig] = None) -> Flask:
    """
    Create a Flask app serving the merge API under /api/merge.

    Args:
        config: Engine configuration (global config when omitted)

    Returns:
        Flask application
    """
    app = Flask(__name__)
    app.config['MERGE_CONFIG'] = config
    app.register_blueprint(merge_blueprint, url_prefix='/api/merge')
    return app
