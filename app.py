import os

ASYNC_MODE = os.environ.get('SOCKETIO_ASYNC_MODE', 'gevent')
if ASYNC_MODE == 'gevent':
    from gevent import monkey
    monkey.patch_all()

import json, logging, random, string, time

from flask import Flask, jsonify, request
from flask_socketio import SocketIO, join_room, leave_room, emit
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from game.errors import ValidationError
from game.settings import Config, normalize_settings
from game.session import GameSession, Handle, Scheduler, E_STATE, E_REJECTED, E_RELAY

app = Flask(__name__)
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'a_secret_key')
# ── Database path ─────────────────────────────────────────────────────────────
# Saved games live in DATABASE_URL when it is set (Postgres on a host, or
# sqlite:// in tests). Otherwise a SQLite file in an 'instance' folder next to
# app.py is used.
_db_url = os.environ.get('DATABASE_URL', None)
if _db_url and _db_url.startswith('postgres://'):
    # SQLAlchemy 1.4+ requires postgresql:// not postgres://
    _db_url = _db_url.replace('postgres://', 'postgresql://', 1)
if not _db_url:
    _data_dir = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'instance')
    os.makedirs(_data_dir, exist_ok=True)
    _db_url = f'sqlite:///{os.path.join(_data_dir, "db.sqlite3")}'
app.config['SQLALCHEMY_DATABASE_URI'] = _db_url
db = SQLAlchemy(app)
migrate = Migrate(app, db)
socketio = SocketIO(app, async_mode=ASYNC_MODE)

BOT_DELAY  = float(os.environ.get('BOT_DELAY', 1.0))
ROOM_MODES = ('solo', 'duo')

# room code -> {'mode', 'config', 'instances': {sid: GameSession},
#               'sides': {sid: 'X'|'O'|None}, 'unsubscribe': {sid: callable}}
rooms = {}

# ── Models ───────────────────────────────────────────────────────────────────
class SavedGame(db.Model):
    id            = db.Column(db.Integer, primary_key=True)
    room          = db.Column(db.String(8), unique=True, nullable=False)
    snapshot_json = db.Column(db.Text, nullable=False)
    updated       = db.Column(db.DateTime, server_default=db.func.now(), onupdate=db.func.now())

# ── Scheduling ───────────────────────────────────────────────────────────────
class SocketIOScheduler(Scheduler):
    """Runs session callbacks as SocketIO background tasks."""

    def call_later(self, delay, fn):
        handle = Handle()
        def run():
            socketio.sleep(delay)
            if handle.cancelled: return
            handle.done = True
            with app.app_context():
                fn()
        socketio.start_background_task(run)
        return handle

def make_scheduler():
    return SocketIOScheduler()

# ── Helpers ───────────────────────────────────────────────────────────────────
def new_room():
    while True:
        code = ''.join(random.choices(string.digits, k=5))
        if code not in rooms: return code

def make_room(mode='solo', config=None):
    return {
        "mode":        mode,
        "config":      config or Config(),
        "instances":   {},
        "sides":       {},
        "unsubscribe": {},
    }

def primary_sid(room_data):
    """The instance whose state is persisted: the solo player or X."""
    for sid, side in room_data["sides"].items():
        if side in (None, 'X'): return sid
    return None

def full_state(room, sid):
    room_data = rooms[room]
    session   = room_data["instances"][sid]
    s = session.snapshot()
    s["room"]        = room
    s["mode"]        = room_data["mode"]
    s["side"]        = room_data["sides"].get(sid)
    s["canUndo"]     = session.can_undo()
    s["canRedo"]     = session.can_redo()
    s["botPending"]  = session.bot_pending
    s["serverNow"]   = time.time()
    return s

def save_snapshot(room, session):
    data = json.dumps(session.snapshot())
    saved = SavedGame.query.filter_by(room=room).first()
    if saved is None:
        db.session.add(SavedGame(room=room, snapshot_json=data))
    else:
        saved.snapshot_json = data
    db.session.commit()

def load_snapshot(room):
    saved = SavedGame.query.filter_by(room=room).first()
    if saved is None: return None
    return json.loads(saved.snapshot_json)

def relay_move(room, from_sid, payload):
    """Transport: hand a locally applied move to every other instance in the room."""
    room_data = rooms.get(room)
    if not room_data: return
    for sid, other in list(room_data["instances"].items()):
        if sid != from_sid:
            other.apply_opponent_move(payload['board'], payload['cell'])

def wire(room, sid, session):
    """Forward a session's events to its client and the relay."""
    def on_event(event):
        room_data = rooms.get(room)
        if not room_data or room_data["instances"].get(sid) is not session:
            return
        if event.kind == E_STATE:
            socketio.emit('state', full_state(room, sid), to=sid)
            if primary_sid(room_data) == sid:
                save_snapshot(room, session)
        elif event.kind == E_REJECTED:
            socketio.emit('rejected', event.payload, to=sid)
        elif event.kind == E_RELAY:
            relay_move(room, sid, event.payload)
        else:
            notice = {'kind': event.kind, 'muted': session.state.config.muted}
            notice.update(event.payload)
            socketio.emit('notice', notice, to=sid)
    return session.events.subscribe(on_event)

def attach(room, sid, session, side):
    room_data = rooms[room]
    room_data["instances"][sid]   = session
    room_data["sides"][sid]       = side
    room_data["unsubscribe"][sid] = wire(room, sid, session)

def detach(room, sid):
    """Drop a client's instance. Returns True if the room was deleted."""
    room_data = rooms.get(room)
    if not room_data or sid not in room_data["instances"]: return False
    session = room_data["instances"].pop(sid)
    room_data["sides"].pop(sid, None)
    room_data["unsubscribe"].pop(sid)()
    session.close()
    for other in room_data["instances"]:
        socketio.emit('opponentLeft', {}, to=other)
    if not room_data["instances"]:
        del rooms[room]
        app.logger.info("room %s closed", room)
        return True
    return False

def session_for(data):
    room = (data or {}).get("room")
    room_data = rooms.get(room)
    if not room_data: return None, None
    return room, room_data["instances"].get(request.sid)

def restore_room(room):
    """Bring a stored, unfinished solo game back into memory."""
    record = load_snapshot(room)
    if not record or record.get('phase') not in ('playing', 'paused'):
        return False
    try:
        session = GameSession.from_snapshot(record, scheduler=make_scheduler(), bot_delay=BOT_DELAY)
    except ValidationError as e:
        app.logger.warning("stored game %s is unreadable: %s", room, e)
        return False
    rooms[room] = make_room('solo', session.state.config)
    rooms[room]["restored"] = session
    app.logger.info("room %s restored from storage", room)
    return True

# ── HTTP ──────────────────────────────────────────────────────────────────────
@app.route('/health')
def health():
    return jsonify(status='ok', rooms=len(rooms))

@app.route('/api/rooms/<room>')
def stored_room(room):
    record = load_snapshot(room)
    if record is None:
        return jsonify(error='unknown room'), 404
    return jsonify(record)

# ── SocketIO Events ───────────────────────────────────────────────────────────
@socketio.on("create")
def create(data=None):
    data   = data or {}
    mode   = data.get('mode', 'solo')
    if mode not in ROOM_MODES: mode = 'solo'
    config = normalize_settings(Config(), data.get('settings'))
    room   = new_room()
    rooms[room] = make_room(mode, config)
    app.logger.info("room %s created (%s)", room, mode)
    emit("created", room)

@socketio.on("join")
def join(data):
    room = (data or {}).get("room"); sid = request.sid
    if room not in rooms and not restore_room(room):
        emit("invalid", {'error': 'Invalid room code'}); return
    room_data = rooms[room]
    if sid in room_data["instances"]:
        emit("state", full_state(room, sid)); return

    if room_data["mode"] == 'solo':
        if room_data["instances"]:
            emit("invalid", {'error': 'Room is full'}); return
        session = room_data.pop("restored", None) or GameSession(
            config=room_data["config"], scheduler=make_scheduler(), bot_delay=BOT_DELAY)
        side = None
    else:
        taken = set(room_data["sides"].values())
        side  = next((s for s in ('X', 'O') if s not in taken), None)
        if side is None:
            emit("invalid", {'error': 'Room is full'}); return
        session = GameSession(config=room_data["config"], scheduler=make_scheduler(),
                              local_side=side, bot_delay=BOT_DELAY)

    join_room(room)
    attach(room, sid, session, side)
    emit("assign", side)
    emit("state", full_state(room, sid))
    if room_data["mode"] == 'duo' and len(room_data["instances"]) == 2:
        emit("opponentJoined", {'room': room}, to=room)

@socketio.on("start")
def start(data):
    room = (data or {}).get("room")
    room_data = rooms.get(room)
    if not room_data or request.sid not in room_data["instances"]: return
    if room_data["mode"] == 'duo' and len(room_data["instances"]) < 2:
        emit("rejected", {'reason': 'waiting_for_opponent'}); return
    for session in list(room_data["instances"].values()):
        session.start()

@socketio.on("move")
def move(data):
    room, session = session_for(data)
    if not session: return
    try:
        b, c = int(data["board"]), int(data["cell"])
    except (KeyError, TypeError, ValueError):
        emit("rejected", {'reason': 'out_of_range'}); return
    session.submit_move(b, c)

@socketio.on("undo")
def undo(data):
    room, session = session_for(data)
    if session: session.undo()

@socketio.on("redo")
def redo(data):
    room, session = session_for(data)
    if session: session.redo()

def _room_wide(data, action):
    room = (data or {}).get("room")
    room_data = rooms.get(room)
    if not room_data or request.sid not in room_data["instances"]: return
    for session in list(room_data["instances"].values()):
        getattr(session, action)()

@socketio.on("pause")
def pause(data):
    _room_wide(data, 'pause')

@socketio.on("resume")
def resume(data):
    _room_wide(data, 'resume')

@socketio.on("restart")
def restart(data):
    _room_wide(data, 'restart')

@socketio.on("update_settings")
def update_settings(data):
    room = (data or {}).get("room")
    room_data = rooms.get(room)
    if not room_data or request.sid not in room_data["instances"]: return
    # In two-player rooms only the host (X) changes settings
    if room_data["sides"].get(request.sid) == 'O': return
    partial = {k: v for k, v in data.items() if k != 'room'}
    config = room_data["config"]
    for session in list(room_data["instances"].values()):
        config = session.update_settings(partial)
    room_data["config"] = config
    emit('settingsUpdated', config.to_record(), to=room)

@socketio.on("leave")
def leave(data):
    room = (data or {}).get("room")
    if room in rooms and request.sid in rooms[room]["instances"]:
        leave_room(room)
        detach(room, request.sid)

@socketio.on('disconnect')
def disconnect():
    sid = request.sid
    for room, room_data in list(rooms.items()):
        if sid in room_data["instances"]:
            detach(room, sid)
            return

def _ensure_db():
    """Create missing tables so a fresh checkout runs without `flask db upgrade`."""
    with app.app_context():
        db.create_all()

_ensure_db()

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO,
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    socketio.run(app, debug=True)
