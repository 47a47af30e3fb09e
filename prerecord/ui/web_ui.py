"""
Flask control surface for the pre-event recorder

JSON endpoints:
- GET  /api/status          recorder, buffer, source and trigger state
- POST /api/trigger         request a flush (optional JSON body: {"reason": ...})
- GET  /api/clips           flushed clips, newest first
- GET  /api/clips/<name>    download one clip
- GET  /health              liveness probe
"""

import threading

from flask import Flask, abort, jsonify, request, send_from_directory
from werkzeug.serving import make_server

from ..core.jsonlog import build_logger

log = build_logger("prerecord.ui")


class WebUI:
    """
    HTTP API for a PreEventRecorder, served from a background thread.

    The server is a werkzeug WSGI server rather than ``Flask.run`` so that
    :meth:`stop` can shut it down from another thread.
    """

    def __init__(self, recorder, host='0.0.0.0', port=5000):
        """
        Args:
            recorder: PreEventRecorder to expose
            host: Interface to bind
            port: TCP port (0 picks a free one at start)
        """
        self.recorder = recorder
        self.host = host
        self.port = port

        self.flask_app = Flask(__name__)
        self._register_routes()

        self._server = None
        self._thread = None

    def _register_routes(self):
        app = self.flask_app
        recorder = self.recorder

        @app.route('/')
        def index():
            return jsonify({
                'recorder_id': recorder.config.recorder_id,
                'endpoints': ['/api/status', '/api/trigger', '/api/clips', '/health'],
            })

        @app.route('/health')
        def health():
            return jsonify({'ok': True, 'state': recorder.state.name})

        @app.route('/api/status')
        def status():
            return jsonify(recorder.status())

        @app.route('/api/trigger', methods=['POST'])
        def trigger():
            body = request.get_json(silent=True) or {}
            reason = body.get('reason') if isinstance(body, dict) else None
            queued = recorder.trigger.fire('http')
            log.info(
                "HTTP trigger",
                extra={'remote_addr': request.remote_addr, 'reason': reason, 'queued': queued},
            )
            # 202: the flush runs later on the recorder thread.
            return jsonify({'success': True, 'queued': queued}), 202

        @app.route('/api/clips')
        def clips():
            return jsonify({'clips': recorder.list_clips()})

        @app.route('/api/clips/<name>')
        def download_clip(name):
            known = {clip['name'] for clip in recorder.list_clips()}
            if name not in known:
                abort(404)
            return send_from_directory(recorder.config.output_dir, name, as_attachment=True)

    def start(self):
        """Bind the socket and serve on a daemon thread."""
        if self._server is not None:
            return

        self._server = make_server(self.host, self.port, self.flask_app, threaded=True)
        self.port = self._server.server_port
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            daemon=True,
            name="WebUI",
        )
        self._thread.start()
        log.info("Web UI started", extra={"host": self.host, "port": self.port})

    def stop(self):
        """Shut the server down and wait for its thread."""
        server, self._server = self._server, None
        if server is None:
            return
        server.shutdown()
        server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
        log.info("Web UI stopped", extra={"port": self.port})
