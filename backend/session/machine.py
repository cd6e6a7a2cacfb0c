"""
Session transitions as pure functions.

Each function takes the current SessionView plus one input (a frame from the
peer, a PIN verdict, a sync tick, a local command) and returns a Step: the
next view, the frames to send in order, and the effects the runtime must
carry out. Nothing here touches a socket, a timer, or the asset store.
"""

from dataclasses import dataclass

from catalog.models import AssetComponent
from config import MOTION_SUFFIX, UNKNOWN_PEER_NAME
from pairing.pin import PinOutcome, PinResult
from protocol.models import Command, Frame
from session.models import PAIRING_STATES, SERVING_STATES, SessionState, SessionView


# --- Effects ---

@dataclass(frozen=True)
class IssuePin:
    """Generate a PIN and feed it back through on_pin_issued()."""


@dataclass(frozen=True)
class CheckPin:
    candidate: str


@dataclass(frozen=True)
class StartSync:
    pass


@dataclass(frozen=True)
class ServeAssetList:
    pass


@dataclass(frozen=True)
class ServeThumbnail:
    asset_id: str


@dataclass(frozen=True)
class ServeFile:
    asset_id: str
    component: AssetComponent | None  # None: the asset's default component
    request_info: str  # echoed back in the FILE_DATA info field


@dataclass(frozen=True)
class Teardown:
    reason: str
    notify_peer: bool = False  # send DISCONNECT before closing


Effect = IssuePin | CheckPin | StartSync | ServeAssetList | ServeThumbnail | ServeFile | Teardown


@dataclass(frozen=True)
class Step:
    view: SessionView
    frames: tuple[Frame, ...] = ()
    effects: tuple[Effect, ...] = ()
    ignored: str | None = None  # why the input had no effect, for logging


def _ignore(view: SessionView, reason: str) -> Step:
    return Step(view, ignored=reason)


def _searching() -> SessionView:
    return SessionView(state=SessionState.SEARCHING)


def _has_peer(view: SessionView) -> bool:
    return view.state in PAIRING_STATES or view.state in SERVING_STATES


def parse_file_request(info: str) -> tuple[str, AssetComponent | None]:
    """Split a GET_FULL_FILE info field into asset id and requested component."""
    if info.endswith(MOTION_SUFFIX):
        return info[: -len(MOTION_SUFFIX)], AssetComponent.MOTION
    return info, None


# --- Local lifecycle ---

def start(view: SessionView) -> Step:
    if view.state != SessionState.IDLE:
        return _ignore(view, f"start while {view.state.value}")
    return Step(_searching())


def stop(view: SessionView) -> Step:
    return Step(
        SessionView(state=SessionState.IDLE),
        effects=(Teardown("Host stopped", notify_peer=True),),
    )


def retry(view: SessionView) -> Step:
    if view.state != SessionState.ERROR:
        return _ignore(view, f"retry while {view.state.value}")
    return Step(_searching())


def disconnect(view: SessionView) -> Step:
    if view.state == SessionState.IDLE:
        return _ignore(view, "disconnect while idle")
    return Step(
        _searching(),
        effects=(Teardown("Disconnected by host", notify_peer=True),),
    )


def on_peer_attached(view: SessionView) -> Step:
    """A new connection replaced whatever session existed."""
    if view.state == SessionState.IDLE:
        return _ignore(view, "connection while idle")
    if view.state == SessionState.SEARCHING:
        return Step(view)
    return Step(_searching())


def on_connection_lost(view: SessionView, error: str | None) -> Step:
    if view.state == SessionState.IDLE:
        return _ignore(view, "connection lost while idle")
    if error:
        next_view = SessionView(state=SessionState.ERROR, error=error)
        return Step(next_view, effects=(Teardown(error),))
    return Step(_searching(), effects=(Teardown("Connection closed by peer"),))


# --- Frames from the peer ---

def on_frame(view: SessionView, frame: Frame) -> Step:
    handler = _FRAME_HANDLERS.get(frame.command)
    if handler is None:
        return _ignore(view, f"{frame.command.name} is not a peer command")
    return handler(view, frame)


def _on_connect(view: SessionView, frame: Frame) -> Step:
    if view.state != SessionState.SEARCHING:
        return _ignore(view, f"CONNECT while {view.state.value}")
    peer_name = frame.info.strip() or UNKNOWN_PEER_NAME
    next_view = SessionView(state=SessionState.AWAITING_PIN, peer_name=peer_name)
    return Step(next_view, effects=(IssuePin(),))


def _on_verify_pin(view: SessionView, frame: Frame) -> Step:
    if view.state != SessionState.AWAITING_PIN:
        return _ignore(view, f"VERIFY_PIN while {view.state.value}")
    next_view = view.model_copy(update={"state": SessionState.VERIFYING})
    return Step(next_view, effects=(CheckPin(frame.info.strip()),))


def _on_list_assets(view: SessionView, frame: Frame) -> Step:
    if view.state not in SERVING_STATES:
        return _ignore(view, f"LIST_ASSETS while {view.state.value}")
    return Step(view, effects=(ServeAssetList(),))


def _on_get_thumbnail(view: SessionView, frame: Frame) -> Step:
    if view.state not in SERVING_STATES:
        return _ignore(view, f"GET_THUMBNAIL while {view.state.value}")
    if not frame.info:
        return _ignore(view, "GET_THUMBNAIL without an asset id")
    return Step(view, effects=(ServeThumbnail(frame.info),))


def _on_get_full_file(view: SessionView, frame: Frame) -> Step:
    if view.state not in SERVING_STATES:
        return _ignore(view, f"GET_FULL_FILE while {view.state.value}")
    asset_id, component = parse_file_request(frame.info)
    if not asset_id:
        return _ignore(view, "GET_FULL_FILE without an asset id")
    return Step(view, effects=(ServeFile(asset_id, component, frame.info),))


def _on_disconnect(view: SessionView, frame: Frame) -> Step:
    if view.state == SessionState.IDLE:
        return _ignore(view, "DISCONNECT while idle")
    return Step(_searching(), effects=(Teardown("Peer disconnected"),))


def _on_notification(view: SessionView, frame: Frame) -> Step:
    return _ignore(view, f"peer notification: {frame.info!r}")


_FRAME_HANDLERS = {
    Command.CONNECT: _on_connect,
    Command.VERIFY_PIN: _on_verify_pin,
    Command.LIST_ASSETS: _on_list_assets,
    Command.GET_THUMBNAIL: _on_get_thumbnail,
    Command.GET_FULL_FILE: _on_get_full_file,
    Command.DISCONNECT: _on_disconnect,
    Command.NOTIFICATION: _on_notification,
}


# --- Pairing ---

def on_pin_issued(view: SessionView, code: str) -> Step:
    if view.state not in PAIRING_STATES:
        return _ignore(view, f"PIN issued while {view.state.value}")
    next_view = view.model_copy(update={"state": SessionState.AWAITING_PIN})
    return Step(next_view, frames=(Frame(Command.PIN_CHALLENGE, code),))


def on_pin_result(view: SessionView, result: PinResult) -> Step:
    if view.state != SessionState.VERIFYING:
        return _ignore(view, f"PIN result while {view.state.value}")

    if result.outcome == PinOutcome.SUCCESS:
        next_view = view.model_copy(update={"state": SessionState.CONNECTED})
        return Step(next_view, frames=(Frame(Command.PIN_OK),), effects=(StartSync(),))

    if result.outcome == PinOutcome.WRONG_CODE:
        next_view = view.model_copy(update={"state": SessionState.AWAITING_PIN})
        message = f"Wrong PIN. {result.attempts_remaining} attempts remaining."
        return Step(
            next_view,
            frames=(Frame(Command.PIN_FAIL), Frame(Command.NOTIFICATION, message)),
        )

    message = "PIN expired" if result.outcome == PinOutcome.EXPIRED else "Too many failed attempts"
    return Step(
        _searching(),
        frames=(Frame(Command.PIN_FAIL), Frame(Command.NOTIFICATION, message)),
        effects=(Teardown(message, notify_peer=True),),
    )


def on_pin_expired(view: SessionView) -> Step:
    """The countdown ran out untouched: re-challenge with a fresh PIN."""
    if view.state not in PAIRING_STATES:
        return _ignore(view, f"PIN expiry while {view.state.value}")
    return Step(
        view,
        frames=(Frame(Command.NOTIFICATION, "PIN expired. Sending new PIN..."),),
        effects=(IssuePin(),),
    )


# --- Sync ---

def on_sync_progress(view: SessionView, progress: float) -> Step:
    if view.state not in (SessionState.CONNECTED, SessionState.SYNCING):
        return _ignore(view, f"sync progress while {view.state.value}")
    progress = min(max(progress, 0.0), 1.0)
    state = SessionState.READY if progress >= 1.0 else SessionState.SYNCING
    return Step(view.model_copy(update={"state": state, "sync_progress": progress}))


def on_sync_failed(view: SessionView, message: str) -> Step:
    if not _has_peer(view):
        return _ignore(view, f"sync failure while {view.state.value}")
    return Step(
        SessionView(state=SessionState.ERROR, error=message),
        frames=(Frame(Command.NOTIFICATION, message),),
        effects=(Teardown(message, notify_peer=True),),
    )
