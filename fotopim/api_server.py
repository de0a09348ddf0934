#!/usr/bin/env python3
"""
FotoPIM API Server
Session-scoped workspace for trimming, resizing and renaming product photos.
The browser front-end talks to these endpoints; all image work happens here.
"""

import os
import logging
import uuid
import threading
from io import BytesIO
from pathlib import Path, PurePosixPath
from typing import Dict, Optional
from dotenv import load_dotenv

# Load environment variables first
load_dotenv()

from flask import Flask, request, jsonify, send_file
from flask_cors import CORS

# --- Centralized Logging Configuration ---
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)-25s - %(levelname)-8s - %(message)s',
    datefmt='%H:%M:%S'
)

from .errors import FotopimError, ItemProcessingError
from .models.batch_job import BatchJob, BatchResult, CancellationSource, NamingSpec
from .models.transform_settings import TransformSettings
from .pipeline.batch_orchestrator import BatchOrchestrator
from .pipeline.normalize_image import normalize_image
from .repositories.image_repository import ImageRepository
from .repositories.item_repository import ItemRepository
from .repositories.settings_repository import SettingsRepository
from .services.naming_service import NamingService
from .services.preview_service import PreviewService
from .services.sink_service import ARCHIVE_NAME, ArchiveSink, DirectorySink

app = Flask(__name__)
CORS(app)  # Enable CORS for frontend communication

# Configuration
RESULTS_FOLDER = os.getenv("RESULTS_FOLDER", "data/results")
MAX_CONTENT_LENGTH = int(os.getenv("MAX_UPLOAD_SIZE_MB", "500")) * 1024 * 1024

app.config['MAX_CONTENT_LENGTH'] = MAX_CONTENT_LENGTH

# Initialize services
image_repository = ImageRepository()
naming_service = NamingService()
settings_repository = SettingsRepository()
orchestrator = BatchOrchestrator(image_repository=image_repository, naming_service=naming_service)

logger = logging.getLogger(__name__)

# Session storage for workspace state
sessions = {}


class WorkspaceSession:
    """All state of one user's workspace, passed explicitly into the core."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        self.items = ItemRepository()
        self.settings: TransformSettings = settings_repository.load()
        self.naming = NamingSpec()
        self.cancellation = CancellationSource()
        self.preview_service = PreviewService(image_repository=image_repository)
        self.future = None
        self.progress: Dict[str, object] = {'processed': 0, 'total': 0, 'current': None}
        self.last_result: Optional[BatchResult] = None
        self.archive: Optional[bytes] = None
        self.lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        # last_result is set by the done-callback, after the worker has let go of the items
        return self.future is not None and self.last_result is None

    def refresh_names(self):
        """Names depend on order, flags and naming fields: recompute them all."""
        return naming_service.apply_names(self.naming, self.items.items)

    def items_payload(self) -> list:
        if not self.is_running:
            self.refresh_names()
        return [item.to_dict() for item in self.items]

    def clear(self):
        """Clear all items from memory."""
        self.cancellation.cancel()
        self.items.clear()
        self.preview_service.forget()
        self.future = None
        self.last_result = None
        self.archive = None


def get_or_create_session(session_id: str = None) -> WorkspaceSession:
    """Get existing session or create new one."""
    if not session_id:
        session_id = str(uuid.uuid4())

    if session_id not in sessions:
        sessions[session_id] = WorkspaceSession(session_id)

    return sessions[session_id]


def _request_data() -> dict:
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict() or request.args.to_dict()


def _session_or_error():
    """Return (session, None) or (None, error response)."""
    session_id = _request_data().get('session_id') or request.args.get('session_id')
    if not session_id or session_id not in sessions:
        return None, (jsonify({'success': False, 'message': 'Invalid session'}), 400)
    return sessions[session_id], None


def _busy_response():
    return jsonify({'success': False, 'message': 'A batch is running for this session'}), 409


def _item_or_error(session: WorkspaceSession, item_id: str):
    item = session.items.get(item_id)
    if item is None:
        return None, (jsonify({'success': False, 'message': f'Unknown item {item_id}'}), 404)
    return item, None


@app.route('/api/items', methods=['POST'])
def add_items():
    """Upload image files into the (new or existing) session."""
    try:
        session = get_or_create_session(request.form.get('session_id'))
        if session.is_running:
            return _busy_response()

        uploads = [f for key in request.files for f in request.files.getlist(key)]
        if not uploads:
            return jsonify({'success': False, 'message': 'No images provided'}), 400

        added = 0
        for upload in uploads:
            # Keep the client name as sent, minus any directory part
            filename = PurePosixPath((upload.filename or '').replace("\\", "/")).name
            if not filename:
                continue
            data = upload.read()
            if session.items.add(filename, data) is not None:
                added += 1

        logger.info(f"Added {added} of {len(uploads)} uploaded files to session {session.session_id}")

        return jsonify({
            'success': True,
            'session_id': session.session_id,
            'added': added,
            'items': session.items_payload(),
            'message': f'Added {added} files' if added else 'No valid image files'
        })

    except Exception as e:
        logger.error(f"Image upload error: {e}")
        return jsonify({'success': False, 'message': f'Error adding images: {str(e)}'}), 500


@app.route('/api/items', methods=['GET'])
def list_items():
    session, error = _session_or_error()
    if error:
        return error
    return jsonify({'success': True, 'session_id': session.session_id, 'items': session.items_payload()})


@app.route('/api/items/<item_id>', methods=['DELETE'])
def delete_item(item_id):
    session, error = _session_or_error()
    if error:
        return error
    if session.is_running:
        return _busy_response()
    if not session.items.remove(item_id):
        return jsonify({'success': False, 'message': f'Unknown item {item_id}'}), 404
    session.preview_service.forget(item_id)
    return jsonify({'success': True, 'items': session.items_payload()})


@app.route('/api/items/delete', methods=['POST'])
def delete_items():
    """Remove several items at once."""
    session, error = _session_or_error()
    if error:
        return error
    if session.is_running:
        return _busy_response()
    ids = _request_data().get('ids') or []
    removed = session.items.remove_many(ids)
    for item_id in ids:
        session.preview_service.forget(item_id)
    return jsonify({'success': True, 'removed': removed, 'items': session.items_payload(),
                    'message': f'Removed {removed} files'})


@app.route('/api/items/clear', methods=['POST'])
def clear_items():
    session, error = _session_or_error()
    if error:
        return error
    if session.is_running:
        return _busy_response()
    session.clear()
    return jsonify({'success': True, 'items': []})


@app.route('/api/items/reorder', methods=['POST'])
def reorder_items():
    """Either ``order`` (full list of ids) or ``item_id`` + ``index``."""
    session, error = _session_or_error()
    if error:
        return error
    if session.is_running:
        return _busy_response()
    data = _request_data()
    try:
        if 'order' in data:
            session.items.reorder(list(data['order']))
        else:
            session.items.move(data['item_id'], int(data['index']))
    except (KeyError, ValueError, TypeError) as e:
        return jsonify({'success': False, 'message': f'Invalid reorder request: {e}'}), 400
    return jsonify({'success': True, 'items': session.items_payload()})


@app.route('/api/items/<item_id>/flag', methods=['POST'])
def toggle_flag(item_id):
    """Toggle the lifestyle flag of one item."""
    session, error = _session_or_error()
    if error:
        return error
    if session.is_running:
        return _busy_response()
    item, error = _item_or_error(session, item_id)
    if error:
        return error
    session.items.toggle_flag(item.id)
    return jsonify({'success': True, 'flagged': item.flagged, 'items': session.items_payload()})


@app.route('/api/items/flag-all', methods=['POST'])
def toggle_all_flags():
    session, error = _session_or_error()
    if error:
        return error
    if session.is_running:
        return _busy_response()
    flagged = session.items.toggle_all_flags()
    return jsonify({'success': True, 'flagged': flagged, 'items': session.items_payload()})


@app.route('/api/items/<item_id>/threshold', methods=['POST'])
def set_threshold(item_id):
    """Set the background tolerance of one item and return its fresh preview data."""
    session, error = _session_or_error()
    if error:
        return error
    if session.is_running:
        return _busy_response()
    item, error = _item_or_error(session, item_id)
    if error:
        return error
    try:
        item.set_threshold(int(_request_data().get('threshold')))
    except (TypeError, ValueError) as e:
        return jsonify({'success': False, 'message': f'Invalid threshold: {e}'}), 400
    try:
        preview = session.preview_service.describe(item, session.settings)
    except ItemProcessingError as e:
        return jsonify({'success': False, 'message': str(e)}), 422
    return jsonify({'success': True, 'item': preview})


@app.route('/api/items/<item_id>/preview', methods=['GET'])
def preview_item(item_id):
    """Bounding box, resolutions and (optionally) the trimmed image of one item."""
    session, error = _session_or_error()
    if error:
        return error
    item, error = _item_or_error(session, item_id)
    if error:
        return error
    include_image = request.args.get('image', '1') not in ('0', 'false')
    try:
        preview = session.preview_service.describe(item, session.settings, include_image=include_image)
    except ItemProcessingError as e:
        logger.warning(f"Preview failed for {item.name}: {e}")
        return jsonify({'success': False, 'message': str(e)}), 422
    return jsonify({'success': True, 'item': preview})


@app.route('/api/items/<item_id>/process', methods=['POST'])
def process_single(item_id):
    """Run the full pipeline on one item and return the JPEG."""
    session, error = _session_or_error()
    if error:
        return error
    if session.is_running:
        return _busy_response()
    item, error = _item_or_error(session, item_id)
    if error:
        return error
    session.refresh_names()
    try:
        encoded = normalize_image(item, session.settings, image_repository=image_repository)
    except ItemProcessingError as e:
        logger.warning(f"Single processing failed for {item.name}: {e}")
        return jsonify({'success': False, 'message': str(e)}), 422
    return send_file(
        BytesIO(encoded.data),
        mimetype='image/jpeg',
        as_attachment=True,
        download_name=naming_service.output_filename(item.output_name or item.name),
    )


@app.route('/api/settings', methods=['GET'])
def get_settings():
    session, error = _session_or_error()
    if error:
        return error
    return jsonify({'success': True, 'settings': session.settings.to_dict(),
                    'naming': {'base_name': session.naming.base_name,
                               'start_number': session.naming.start_number}})


@app.route('/api/settings', methods=['POST', 'PUT'])
def update_settings():
    """Update and persist transform settings."""
    session, error = _session_or_error()
    if error:
        return error
    if session.is_running:
        return _busy_response()
    try:
        new_settings = TransformSettings.from_dict(_request_data(), base=session.settings)
    except ValueError as e:
        return jsonify({'success': False, 'message': f'Invalid settings: {e}'}), 400

    if new_settings.effective_margin != session.settings.effective_margin:
        session.items.invalidate_boxes()
    session.settings = new_settings
    settings_repository.save(new_settings)
    return jsonify({'success': True, 'settings': new_settings.to_dict(), 'items': session.items_payload()})


@app.route('/api/naming', methods=['POST', 'PUT'])
def update_naming():
    """Base name and start number live for the session only."""
    session, error = _session_or_error()
    if error:
        return error
    if session.is_running:
        return _busy_response()
    data = _request_data()
    session.naming = NamingSpec(
        base_name=str(data.get('base_name', session.naming.base_name)),
        start_number=str(data.get('start_number', session.naming.start_number)),
    )
    return jsonify({'success': True, 'items': session.items_payload()})


@app.route('/api/batch', methods=['POST'])
def start_batch():
    """Start processing in ``zip`` or ``directory`` mode."""
    session, error = _session_or_error()
    if error:
        return error
    data = _request_data()

    with session.lock:
        if session.is_running:
            return _busy_response()
        if len(session.items) == 0:
            return jsonify({'success': False, 'message': 'No files to process'}), 400

        mode = data.get('mode', 'zip')
        if mode == 'zip':
            sink = ArchiveSink(archive_name=ARCHIVE_NAME)
        elif mode == 'directory':
            directory = data.get('directory')
            if not directory:
                return jsonify({'success': False, 'message': 'No output directory given'}), 400
            directory = Path(directory)
            if not directory.is_absolute():
                directory = Path(RESULTS_FOLDER) / directory
            sink = DirectorySink(directory)
        else:
            return jsonify({'success': False, 'message': f'Unknown mode {mode}'}), 400

        # Names always follow the full collection, also for a follow-up run.
        names = dict(zip((item.id for item in session.items), session.refresh_names()))
        items = session.items.unfinished() if data.get('only_unfinished') else session.items.items
        if not items:
            return jsonify({'success': False, 'message': 'Nothing left to process'}), 400

        job = BatchJob(
            items=items,
            naming=session.naming,
            settings=session.settings,
            sink=sink,
            cancellation=session.cancellation,
            output_names=[names[item.id] for item in items],
        )
        session.progress = {'processed': 0, 'total': job.total, 'current': None}
        session.last_result = None
        session.archive = None

        def on_progress(processed, total, label):
            session.progress = {'processed': processed, 'total': total, 'current': label}

        def on_done(future):
            try:
                result = future.result()
            except Exception as e:
                logger.error(f"Batch crashed for session {session.session_id}: {e}")
                result = BatchResult(total=job.total, fatal_error=str(e))
            session.last_result = result
            session.archive = result.archive

        session.future = orchestrator.submit(job, on_progress)
        session.future.add_done_callback(on_done)

    logger.info(f"Batch of {job.total} items started for session {session.session_id} ({mode})")
    return jsonify({'success': True, 'session_id': session.session_id, 'total': job.total, 'mode': mode}), 202


@app.route('/api/batch', methods=['GET'])
def batch_status():
    session, error = _session_or_error()
    if error:
        return error
    progress = dict(session.progress)
    total = progress.get('total') or 0
    progress['percent'] = round(100 * progress.get('processed', 0) / total) if total else 0
    return jsonify({
        'success': True,
        'running': session.is_running,
        'progress': progress,
        'result': session.last_result.to_dict() if session.last_result else None,
        'archive_ready': session.archive is not None,
        'items': session.items_payload(),
    })


@app.route('/api/batch/cancel', methods=['POST'])
def cancel_batch():
    """Cooperative cancel: the item in flight still finishes."""
    session, error = _session_or_error()
    if error:
        return error
    if not session.is_running:
        return jsonify({'success': False, 'message': 'No batch is running'}), 409
    session.cancellation.cancel()
    logger.info(f"Cancellation requested for session {session.session_id}")
    return jsonify({'success': True, 'message': 'Cancelling'})


@app.route('/api/batch/archive', methods=['GET'])
def download_archive():
    session, error = _session_or_error()
    if error:
        return error
    if session.archive is None:
        return jsonify({'success': False, 'message': 'No archive available'}), 404
    return send_file(BytesIO(session.archive), mimetype='application/zip',
                     as_attachment=True, download_name=ARCHIVE_NAME)


@app.route('/api/health', methods=['GET'])
def health_check():
    """Health check endpoint."""
    return jsonify({
        'status': 'healthy',
        'message': 'FotoPIM API is running',
        'active_sessions': len(sessions)
    })


@app.route('/api/clear-session', methods=['POST'])
def clear_session():
    """Clear a session and free memory."""
    try:
        session_id = _request_data().get('session_id')
        if session_id and session_id in sessions:
            sessions[session_id].clear()
            del sessions[session_id]
            return jsonify({'success': True, 'message': 'Session cleared'})
        else:
            return jsonify({'success': False, 'message': 'Session not found'})
    except Exception as e:
        logger.error(f"Error clearing session: {e}")
        return jsonify({'success': False, 'message': 'Error clearing session'}), 500


@app.errorhandler(413)
def too_large(e):
    """Handle file too large error."""
    return jsonify({'error': f'Upload too large. Maximum size is {MAX_CONTENT_LENGTH // (1024 * 1024)}MB.'}), 413


@app.errorhandler(FotopimError)
def fotopim_error(e):
    logger.error(f"Unhandled processing error: {e}")
    return jsonify({'success': False, 'message': str(e)}), 500


@app.errorhandler(500)
def internal_error(e):
    """Handle internal server error."""
    logger.error(f"Internal server error: {e}")
    return jsonify({'error': 'Internal server error'}), 500


def main():
    host = os.getenv("API_HOST", "127.0.0.1")
    port = int(os.getenv("API_PORT", "5000"))
    logger.info(f"Starting FotoPIM API on {host}:{port}")
    logger.info(f"Max upload size: {MAX_CONTENT_LENGTH // (1024 * 1024)}MB")
    logger.info(f"Settings file: {settings_repository.path}")
    app.run(host=host, port=port, threaded=True)


if __name__ == '__main__':
    main()
