"""
Printer Pool Service - Main Application
=======================================

HTTP surface over the printer pool and dispatcher.

Run: python -m printer_pool
"""

import base64
import binascii
import platform
import socket
import sys
from datetime import datetime

import structlog
from flask import Flask, request, jsonify
from flask_cors import CORS

from . import __version__
from .config import PORT, HOST, DEBUG, API_KEY, DATA_DIR, PRINTER_TYPES, LOG_LEVEL, LOG_FILE
from .dispatcher import PrintDispatcher
from .exceptions import NoEligiblePrinter, ValidationError
from .logging_config import setup_logging
from .pool import PrinterPool
from .raster import image_to_escpos
from .storage import PrinterStore
from .validation import parse_printer_config

logger = structlog.get_logger()


def _result_status(result) -> int:
    """HTTP status for a job result."""
    if result.success:
        return 200
    if isinstance(result.error, NoEligiblePrinter):
        return 503
    return 502


def _decode_base64(value: str, field: str) -> bytes:
    # Strip data-uri prefix if present
    if value.startswith('data:') and ',' in value:
        value = value.split(',', 1)[1]
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError(f'{field} is not valid base64', field) from None


def _build_payload(data: dict):
    """Raw bytes, or a renderer that rasterises an image for the chosen printer."""
    if data.get('payload_base64'):
        return _decode_base64(data['payload_base64'], 'payload_base64')
    if data.get('image_base64'):
        image_data = _decode_base64(data['image_base64'], 'image_base64')
        cut = data.get('cut', True)
        return lambda entry: image_to_escpos(image_data, entry.print_width, cut=cut)
    raise ValidationError('payload_base64 or image_base64 required')


def create_app(pool: PrinterPool, dispatcher: PrintDispatcher, api_key: str = API_KEY) -> Flask:
    """Create the Flask application bound to a pool and dispatcher."""
    app = Flask(__name__)
    CORS(app)
    app.config['PRINTER_POOL'] = pool
    app.config['PRINT_DISPATCHER'] = dispatcher

    def _check_api_key():
        """Validate API key from request."""
        data = request.get_json(silent=True) or {}
        auth_header = request.headers.get('Authorization', '')

        # Check body
        if isinstance(data, dict) and data.get('api_key') == api_key:
            return True

        # Check header (Bearer token)
        if auth_header.startswith('Bearer ') and auth_header[7:] == api_key:
            return True

        return False

    def _unauthorized():
        return jsonify({'success': False, 'error': 'Invalid API key'}), 401

    def _json_body():
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return None
        data.pop('api_key', None)
        return data

    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        return jsonify({'success': False, 'error': str(e), 'field': e.field}), 400

    # =========================================================================
    # Health & Info Endpoints
    # =========================================================================

    @app.route('/api', methods=['GET'])
    def api_info():
        """API info (JSON)."""
        return jsonify({
            'service': 'Printer Pool Service',
            'version': __version__,
            'status': 'running',
            'printer_types': PRINTER_TYPES,
            'endpoints': {
                'health': '/health',
                'printers': '/api/printers',
                'print': '/api/print',
                'status': '/api/status',
                'jobs': '/api/jobs',
            }
        })

    @app.route('/health', methods=['GET'])
    def health():
        """Health check with system info."""
        return jsonify({
            'status': 'online',
            'version': __version__,
            'hostname': socket.gethostname(),
            'platform': platform.system(),
            'python': sys.version.split()[0],
            'printers_registered': len(pool),
            'timestamp': datetime.now().isoformat(),
        })

    # =========================================================================
    # Printer Management API
    # =========================================================================

    @app.route('/api/printers', methods=['GET'])
    def list_printers():
        """List all registered printers."""
        printers = pool.get_printers()
        return jsonify({
            'success': True,
            'printers': [p.to_dict() for p in printers],
            'count': len(printers)
        })

    @app.route('/api/printers', methods=['POST'])
    def add_printer():
        """Add a new printer."""
        if not _check_api_key():
            return _unauthorized()

        data = _json_body()
        if data is None:
            return jsonify({'success': False, 'error': 'Request body required'}), 400

        config = parse_printer_config(data)
        if not pool.add_printer(config):
            return jsonify({'success': False, 'error': f'Printer {config.id} already exists'}), 409

        return jsonify({
            'success': True,
            'printer': pool.get_printer(config.id).to_dict(),
            'message': 'Printer added successfully'
        }), 201

    @app.route('/api/printers/<printer_id>', methods=['GET'])
    def get_printer(printer_id):
        """Get printer details."""
        printer = pool.get_printer(printer_id)
        if not printer:
            return jsonify({'success': False, 'error': 'Printer not found'}), 404

        return jsonify({
            'success': True,
            'printer': printer.to_dict()
        })

    @app.route('/api/printers/<printer_id>', methods=['PUT'])
    def update_printer(printer_id):
        """Update printer configuration."""
        if not _check_api_key():
            return _unauthorized()

        printer = pool.get_printer(printer_id)
        if not printer:
            return jsonify({'success': False, 'error': 'Printer not found'}), 404

        data = _json_body()
        if data is None:
            return jsonify({'success': False, 'error': 'Request body required'}), 400

        # Partial updates: fields not sent keep their current value
        merged = printer.config.to_dict()
        if 'type' in data and data['type'] != merged['type']:
            merged = {k: merged[k] for k in ('id', 'name', 'print_width')}
        # The pool keeps its current enabled flag unless the body sets one
        merged.pop('enabled', None)
        merged.update(data)

        parse_printer_config(merged, printer_id=printer_id)
        if not pool.update_printer(printer_id, merged):
            return jsonify({'success': False, 'error': 'Printer not found'}), 404

        return jsonify({
            'success': True,
            'printer': pool.get_printer(printer_id).to_dict()
        })

    @app.route('/api/printers/<printer_id>', methods=['DELETE'])
    def delete_printer(printer_id):
        """Delete a printer."""
        if not _check_api_key():
            return _unauthorized()

        if not pool.remove_printer(printer_id):
            return jsonify({'success': False, 'error': 'Printer not found'}), 404

        return jsonify({
            'success': True,
            'message': 'Printer deleted'
        })

    @app.route('/api/printers/<printer_id>/enabled', methods=['POST'])
    def set_printer_enabled(printer_id):
        """Enable or disable a printer."""
        if not _check_api_key():
            return _unauthorized()

        data = _json_body()
        if data is None or not isinstance(data.get('enabled'), bool):
            return jsonify({'success': False, 'error': 'enabled (boolean) required'}), 400

        if not pool.set_printer_enabled(printer_id, data['enabled']):
            return jsonify({'success': False, 'error': 'Printer not found'}), 404

        return jsonify({
            'success': True,
            'printer': pool.get_printer(printer_id).to_dict()
        })

    @app.route('/api/printers/<printer_id>/test', methods=['POST'])
    def test_printer(printer_id):
        """Test connection to printer."""
        if not _check_api_key():
            return _unauthorized()

        if printer_id not in pool:
            return jsonify({'success': False, 'error': 'Printer not found'}), 404

        return jsonify(dispatcher.test_printer(printer_id))

    # =========================================================================
    # Printing
    # =========================================================================

    @app.route('/api/print', methods=['POST'])
    def submit_print_job():
        """Submit a print job to the pool (or to one printer)."""
        if not _check_api_key():
            return _unauthorized()

        data = _json_body()
        if data is None:
            return jsonify({'success': False, 'error': 'Request body required'}), 400

        payload = _build_payload(data)
        max_attempts = data.get('max_attempts')
        if max_attempts is not None and (not isinstance(max_attempts, int) or max_attempts < 1):
            return jsonify({'success': False, 'error': 'max_attempts must be a positive integer'}), 400

        result = dispatcher.submit_job(
            payload,
            target_printer_id=data.get('target_printer_id'),
            max_attempts=max_attempts,
            source=data.get('source', 'api'),
        )
        return jsonify(result.to_dict()), _result_status(result)

    @app.route('/api/print-all', methods=['POST'])
    def print_all():
        """Print the same payload on every enabled printer."""
        if not _check_api_key():
            return _unauthorized()

        data = _json_body()
        if data is None:
            return jsonify({'success': False, 'error': 'Request body required'}), 400

        result = dispatcher.print_to_all(_build_payload(data))
        return jsonify(result), 200 if result['success'] else 502

    @app.route('/api/cash-drawer', methods=['POST'])
    def cash_drawer():
        """Open the cash drawer."""
        if not _check_api_key():
            return _unauthorized()

        data = _json_body() or {}
        result = dispatcher.open_cash_drawer(data.get('printer_id'))
        return jsonify(result.to_dict()), _result_status(result)

    # =========================================================================
    # Status & Job History
    # =========================================================================

    @app.route('/api/status', methods=['GET'])
    def pool_status():
        """Pool status summary."""
        return jsonify(dict(pool.get_status(), success=True))

    @app.route('/api/jobs', methods=['GET'])
    def list_jobs():
        """List recent jobs."""
        limit = request.args.get('limit', 50, type=int)
        printer_id = request.args.get('printer_id')

        jobs = dispatcher.list_jobs(printer_id=printer_id, limit=limit)
        return jsonify({
            'success': True,
            'jobs': [j.to_dict() for j in jobs],
            'count': len(jobs)
        })

    return app


# =============================================================================
# Main
# =============================================================================

def main():
    """Run the service."""
    setup_logging(LOG_LEVEL, LOG_FILE)

    pool = PrinterPool(store=PrinterStore())
    loaded = pool.load()
    dispatcher = PrintDispatcher(pool)
    app = create_app(pool, dispatcher)

    logger.info("Printer Pool Service starting", version=__version__, host=HOST, port=PORT,
                data_dir=DATA_DIR, printers=loaded)
    try:
        app.run(host=HOST, port=PORT, debug=DEBUG, threaded=True)
    finally:
        dispatcher.shutdown()
        pool.close()


if __name__ == '__main__':
    main()
