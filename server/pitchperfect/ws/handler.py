import logging

import socketio

logger = logging.getLogger(__name__)

sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins="*",
    logger=False,
    engineio_logger=False,
)

# Store active connection mappings: sid -> presentation_id
active_connections: dict[str, str] = {}


@sio.event
async def connect(sid, environ, auth):
    presentation_id = None
    if auth and isinstance(auth, dict):
        presentation_id = auth.get("presentationId")

    if presentation_id:
        active_connections[sid] = presentation_id
        await sio.enter_room(sid, f"presentation_{presentation_id}")
        logger.info(f"Client {sid} connected to presentation {presentation_id}")
    else:
        logger.info(f"Client {sid} connected without presentation ID")


@sio.event
async def disconnect(sid):
    presentation_id = active_connections.pop(sid, None)
    if presentation_id:
        logger.info(f"Client {sid} disconnected from presentation {presentation_id}")

        from pitchperfect.ws.events import handle_client_disconnect
        await handle_client_disconnect(presentation_id, sid)


@sio.event
async def practice_start(sid, data=None):
    from pitchperfect.ws.events import handle_practice_start
    presentation_id = active_connections.get(sid)
    if presentation_id:
        await handle_practice_start(presentation_id, sid)


@sio.event
async def practice_pause(sid, data=None):
    from pitchperfect.ws.events import handle_practice_pause
    presentation_id = active_connections.get(sid)
    if presentation_id:
        await handle_practice_pause(presentation_id, sid)


@sio.event
async def practice_resume(sid, data=None):
    from pitchperfect.ws.events import handle_practice_resume
    presentation_id = active_connections.get(sid)
    if presentation_id:
        await handle_practice_resume(presentation_id, sid)


@sio.event
async def practice_finish(sid, data=None):
    from pitchperfect.ws.events import handle_practice_finish
    presentation_id = active_connections.get(sid)
    if presentation_id:
        await handle_practice_finish(presentation_id, sid)


@sio.event
async def practice_process(sid, data=None):
    from pitchperfect.ws.events import handle_practice_process
    presentation_id = active_connections.get(sid)
    if presentation_id:
        await handle_practice_process(presentation_id, sid)


@sio.event
async def agent_mode_change(sid, data):
    from pitchperfect.ws.events import handle_agent_mode_change
    presentation_id = active_connections.get(sid)
    if presentation_id:
        await handle_agent_mode_change(presentation_id, sid, data)


@sio.event
async def agent_disconnected(sid, data):
    from pitchperfect.ws.events import handle_agent_disconnected
    presentation_id = active_connections.get(sid)
    if presentation_id:
        await handle_agent_disconnected(presentation_id, sid, data)


@sio.event
async def agent_error(sid, data):
    from pitchperfect.ws.events import handle_agent_error
    presentation_id = active_connections.get(sid)
    if presentation_id:
        await handle_agent_error(presentation_id, sid, data)


@sio.event
async def audio_chunk(sid, data):
    from pitchperfect.ws.events import handle_audio_chunk
    presentation_id = active_connections.get(sid)
    if presentation_id:
        await handle_audio_chunk(presentation_id, sid, data)
