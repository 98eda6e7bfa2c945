"""
Web API for the retail brand scraper
Provides REST endpoints, Server-Sent Events progress and Socket.IO job rooms
"""

import io
import json
import logging
import queue
from datetime import datetime, timezone

from flask import Flask, Response, jsonify, request, send_file
from flask_cors import CORS
from flask_socketio import SocketIO, emit, join_room, leave_room

from config import get_settings
from models import JobRequest, status_payload
from orchestrator import JobManager, JobOrchestrator
from progress import ProgressBroker, TERMINAL_MESSAGE_TYPES
from scraper import validate_api_key
from storage import EXPORT_MIMETYPES, create_session_store, export_results

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config['SECRET_KEY'] = settings.secret_key
CORS(app)
socketio = SocketIO(app, cors_allowed_origins="*", async_mode='threading')

store = create_session_store(settings)
broker = ProgressBroker(socketio)
job_manager = JobManager()

STORE_NOT_CONFIGURED = 'Session store not configured. Please set SUPABASE_URL and SUPABASE_KEY.'


def build_orchestrator(job_request: JobRequest) -> JobOrchestrator:
    return JobOrchestrator(job_request, store, broker, settings)


def sse_format(message: dict) -> str:
    return f"data: {json.dumps(message)}\n\n"


class ProgressStream:
    """
    Relays a job's progress messages as Server-Sent Events until its terminal
    message.

    The WSGI server calls close() when the client goes away, including before
    the first chunk was sent. Closing releases the broker subscription; the
    job keeps running.
    """

    def __init__(self, job_id: str, subscription: queue.Queue, heartbeat_interval: float):
        self.job_id = job_id
        self.subscription = subscription
        self.heartbeat_interval = heartbeat_interval
        self.closed = False
        self._events = self._relay()

    def __iter__(self):
        return self

    def __next__(self) -> str:
        if self.closed:
            raise StopIteration
        try:
            return next(self._events)
        except StopIteration:
            self.close()
            raise

    def _relay(self):
        while True:
            try:
                message = self.subscription.get(timeout=self.heartbeat_interval)
            except queue.Empty:
                yield ': heartbeat\n\n'
                continue

            yield sse_format(message)
            if message.get('type') in TERMINAL_MESSAGE_TYPES:
                return

    def close(self):
        if self.closed:
            return
        self.closed = True
        self._events.close()
        broker.unsubscribe(self.job_id, self.subscription)
        logger.info(
            "[Job %s] Progress listener detached, %d remaining",
            self.job_id, broker.listener_count(self.job_id)
        )


def stream_progress(job_id: str, subscription: queue.Queue, heartbeat_interval: float) -> ProgressStream:
    return ProgressStream(job_id, subscription, heartbeat_interval)


def _parse_job_request():
    """Returns (job_request, None) or (None, error response)"""
    if store is None:
        return None, (jsonify({'error': STORE_NOT_CONFIGURED}), 500)

    payload = request.get_json(silent=True) or {}
    try:
        job_request = JobRequest.from_payload(payload)
    except ValueError as e:
        return None, (jsonify({'error': str(e)}), 400)

    try:
        exists = job_manager.is_active(job_request.job_id) or store.get_session(job_request.job_id)
    except Exception as e:
        logger.exception("Session lookup failed for %s", job_request.job_id)
        return None, (jsonify({'error': str(e)}), 500)
    if exists:
        return None, (jsonify({'error': f'Job {job_request.job_id} already exists'}), 409)

    return job_request, None


@app.route('/')
def index():
    """Service info"""
    return jsonify({
        'status': 'ok',
        'message': f'Retail Brands Scraper API ({settings.grid_spacing_km:g}km grid)',
        'storeConnected': store is not None,
        'gridSpacing': f'{settings.grid_spacing_km:g}km',
        'dedupScope': settings.dedup_scope,
        'endpoints': [
            'POST /api/validate-key',
            'POST /api/scrape',
            'POST /api/jobs',
            'GET /api/status/:jobId',
            'GET /api/results/:jobId',
            'GET /api/results/:jobId/export/:format',
            'DELETE /api/jobs/:jobId'
        ]
    })


@app.route('/health')
def health():
    return jsonify({
        'status': 'healthy',
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'store': store is not None
    })


@app.route('/api/validate-key', methods=['POST'])
def validate_key():
    """Check a Google Maps API key with one minimal Places call"""
    api_key = (request.get_json(silent=True) or {}).get('apiKey')
    if not api_key:
        return jsonify({'valid': False, 'error': 'apiKey is required'}), 400

    result = validate_api_key(api_key, timeout=settings.request_timeout)
    if result.valid:
        return jsonify(result.to_dict())
    status_code = 500 if result.reason == 'transient' else 400
    return jsonify(result.to_dict()), status_code


@app.route('/api/scrape', methods=['POST'])
def scrape():
    """Start a job and stream its progress as Server-Sent Events"""
    job_request, error = _parse_job_request()
    if error:
        return error

    orchestrator = build_orchestrator(job_request)
    logger.info("[Job %s] Starting scrape with %s grid points", job_request.job_id, len(orchestrator.grid))

    # Subscribe before starting so the start message is never missed
    subscription = broker.subscribe(job_request.job_id)
    job_manager.start(orchestrator)

    return Response(
        stream_progress(job_request.job_id, subscription, settings.heartbeat_interval),
        mimetype='text/event-stream',
        headers={
            'Cache-Control': 'no-cache',
            'Connection': 'keep-alive',
            'X-Accel-Buffering': 'no'
        }
    )


@app.route('/api/jobs', methods=['POST'])
def start_job():
    """Start a job in the background; follow it over Socket.IO or by polling"""
    job_request, error = _parse_job_request()
    if error:
        return error

    orchestrator = build_orchestrator(job_request)
    job_manager.start(orchestrator)

    return jsonify({
        'jobId': job_request.job_id,
        'status': orchestrator.job.status,
        'totalOperations': orchestrator.job.total_operations
    }), 202


@app.route('/api/status/<job_id>')
def get_status(job_id):
    if store is None:
        return jsonify({'error': STORE_NOT_CONFIGURED}), 500

    try:
        session = store.get_session(job_id)
    except Exception as e:
        logger.exception("Error fetching session %s", job_id)
        return jsonify({'error': str(e)}), 500

    if not session:
        return jsonify({'error': 'Job not found'}), 404
    return jsonify(status_payload(session))


@app.route('/api/results/<job_id>')
def get_results(job_id):
    if store is None:
        return jsonify({'error': STORE_NOT_CONFIGURED}), 500

    try:
        session = store.get_session(job_id)
        if not session:
            return jsonify({'error': 'Job not found'}), 404
        results = store.get_results(job_id)
    except Exception:
        logger.exception("Error fetching results for %s", job_id)
        return jsonify({'error': 'Failed to fetch results'}), 500

    return jsonify({
        'job': session,
        'results': results,
        'totalCost': session.get('total_cost')
    })


@app.route('/api/results/<job_id>/export/<fmt>')
def export_job(job_id, fmt):
    """Export job results as a downloadable file"""
    if fmt not in EXPORT_MIMETYPES:
        return jsonify({'error': 'Invalid format'}), 400
    if store is None:
        return jsonify({'error': STORE_NOT_CONFIGURED}), 500

    try:
        session = store.get_session(job_id)
        if not session:
            return jsonify({'error': 'Job not found'}), 404
        results = store.get_results(job_id)
    except Exception:
        logger.exception("Error fetching results for %s", job_id)
        return jsonify({'error': 'Failed to fetch results'}), 500

    return send_file(
        io.BytesIO(export_results(results, fmt)),
        mimetype=EXPORT_MIMETYPES[fmt],
        as_attachment=True,
        download_name=f'brand_results_{job_id}.{fmt}'
    )


@app.route('/api/jobs/<job_id>', methods=['DELETE'])
def delete_job(job_id):
    """Delete a finished job's session and results"""
    if store is None:
        return jsonify({'error': STORE_NOT_CONFIGURED}), 500
    if job_manager.is_active(job_id):
        return jsonify({'error': 'Job is still running'}), 409

    try:
        if not store.get_session(job_id):
            return jsonify({'error': 'Job not found'}), 404
        store.delete_session(job_id)
    except Exception as e:
        logger.exception("Error deleting job %s", job_id)
        return jsonify({'error': str(e)}), 500

    return jsonify({'success': True})


@socketio.on('join_job')
def handle_join_job(data):
    """Subscribe this client to a job's progress room"""
    job_id = (data or {}).get('job_id')
    if not job_id:
        emit('job_error', {'error': 'job_id is required'})
        return

    join_room(job_id)
    emit('joined', {'jobId': job_id})

    # Late joiners get the current state straight away
    if store is not None:
        session = store.get_session(job_id)
        if session:
            emit('status', status_payload(session))


@socketio.on('leave_job')
def handle_leave_job(data):
    job_id = (data or {}).get('job_id')
    if job_id:
        leave_room(job_id)


if __name__ == '__main__':
    logger.info("Server running on port %d, grid spacing %gkm", settings.port, settings.grid_spacing_km)
    logger.info("Session store: %s", 'connected' if store else 'not configured')
    socketio.run(app, host='0.0.0.0', port=settings.port, allow_unsafe_werkzeug=True)
