from flask import Flask, abort, redirect, render_template, request, send_file, session, url_for
from dotenv import load_dotenv
from collections import OrderedDict
from io import BytesIO
import logging
import os
import threading
import uuid

from backend.models.generation import build_client_from_env
from backend.utils.preprocess import guess_mime_type
from frontend.controller import IMAGE_KINDS, TryOnController

load_dotenv()

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.secret_key = os.environ.get('FLASK_SECRET_KEY') or os.urandom(24)

MAX_SESSIONS = int(os.environ.get('MAX_SESSIONS', 100))

# In-memory controller registry keyed by browser session, least recently used first
CONTROLLERS = OrderedDict()
_controllers_lock = threading.Lock()


def get_generation_client():
    client = app.config.get('GENERATION_CLIENT')
    if client is None:
        client = build_client_from_env()
        app.config['GENERATION_CLIENT'] = client
    return client


def find_controller():
    """Controller for this browser, or None if it has not done anything yet."""
    sid = session.get('sid')
    if sid is None:
        return None
    with _controllers_lock:
        controller = CONTROLLERS.get(sid)
        if controller is not None:
            CONTROLLERS.move_to_end(sid)
        return controller


def get_controller() -> TryOnController:
    """Controller for this browser, created on first use."""
    controller = find_controller()
    if controller is not None:
        return controller

    sid = uuid.uuid4().hex
    session['sid'] = sid
    controller = TryOnController(get_generation_client())
    with _controllers_lock:
        CONTROLLERS[sid] = controller
        while len(CONTROLLERS) > MAX_SESSIONS:
            evicted, _ = CONTROLLERS.popitem(last=False)
            logger.info(f"Evicted idle session {evicted}")
    return controller


@app.route('/')
def index():
    controller = find_controller() or TryOnController(client=None)
    return render_template('index.html', state=controller.state, controller=controller)


@app.route('/upload/<kind>', methods=['POST'])
def upload(kind):
    if kind not in IMAGE_KINDS:
        abort(404)
    file = request.files.get('image')
    if file is None or not file.filename:
        return redirect(url_for('index'))

    data = file.read()
    mime_type = file.mimetype
    if not mime_type or not mime_type.startswith('image/'):
        mime_type = guess_mime_type(data)
    get_controller().upload(kind, data, mime_type, file.filename)
    return redirect(url_for('index'))


@app.route('/generate', methods=['POST'])
def generate():
    get_controller().generate()
    return redirect(url_for('index'))


@app.route('/refine', methods=['POST'])
def refine():
    get_controller().refine(request.form.get('prompt', ''))
    return redirect(url_for('index'))


@app.route('/download')
def download():
    controller = find_controller()
    result = controller.download() if controller is not None else None
    if result is None:
        abort(404)
    filename, data = result
    return send_file(BytesIO(data), mimetype='image/png', as_attachment=True, download_name=filename)


@app.route('/reset', methods=['POST'])
def reset():
    sid = session.pop('sid', None)
    if sid is not None:
        with _controllers_lock:
            controller = CONTROLLERS.pop(sid, None)
        if controller is not None:
            controller.start_over()
    return redirect(url_for('index'))


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    port = int(os.environ.get('PORT', 3000))
    app.run(host='0.0.0.0', port=port, debug=True)
