from enum import Enum, auto


class CaptureState(Enum):
    IDLE = auto()
    REQUESTING_PERMISSIONS = auto()
    RECORDING = auto()
    STOPPING = auto()
    STOPPED = auto()


VALID_TRANSITIONS: dict[CaptureState, set[CaptureState]] = {
    CaptureState.IDLE: {
        CaptureState.REQUESTING_PERMISSIONS,
        CaptureState.RECORDING,
        CaptureState.STOPPING,
    },
    CaptureState.REQUESTING_PERMISSIONS: {
        CaptureState.RECORDING,
        CaptureState.IDLE,
        CaptureState.STOPPED,
        CaptureState.STOPPING,
    },
    CaptureState.RECORDING: {CaptureState.STOPPING},
    CaptureState.STOPPING: {CaptureState.STOPPED},
    CaptureState.STOPPED: {
        CaptureState.REQUESTING_PERMISSIONS,
        CaptureState.RECORDING,
        CaptureState.STOPPING,
    },
}


class InvalidTransitionError(Exception):
    pass


def validate_transition(current: CaptureState, target: CaptureState) -> None:
    if target not in VALID_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(f"Cannot transition from {current.name} to {target.name}")
