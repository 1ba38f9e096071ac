"""
Error taxonomy.

Critical errors always end the session. Recoverable errors are caught by
the calling layer, which retries, repositions or abandons the sub-goal.
Give-up outcomes (unreachable target, item that does not fit) are not
errors at all and never reach this module.
"""


class BotKernelError(Exception):
    """Base class for every error raised by the kernel."""
    pass


# --- Session-ending ---

class CriticalError(BotKernelError):
    """Death, chicken and emergency exit. Always terminates the session."""
    pass


class DiedError(CriticalError):
    def __init__(self, message: str = "player is dead"):
        super().__init__(message)


class ChickenError(CriticalError):
    def __init__(self, message: str = "player life below chicken threshold"):
        super().__init__(message)


class MercChickenError(CriticalError):
    def __init__(self, message: str = "mercenary life below chicken threshold"):
        super().__init__(message)


class EmergencyExitError(CriticalError):
    def __init__(self, message: str = "emergency exit triggered"):
        super().__init__(message)


class SessionStoppedError(BotKernelError):
    """The active tier is Stop. Loops unwind and exit without crashing."""

    def __init__(self, message: str = "session is stopped"):
        super().__init__(message)


class IdleTimeoutError(BotKernelError):
    def __init__(self, idle_seconds: float):
        self.idle_seconds = idle_seconds
        super().__init__(
            f"player idle (no significant movement) for {idle_seconds:.0f}s, quitting game"
        )


class MaxGameLengthError(BotKernelError):
    def __init__(self, duration: float):
        self.duration = duration
        super().__init__(f"max game length reached: {duration:.2f}s")


# --- Recoverable: movement ---

class MovementError(BotKernelError):
    pass


class MonstersInPathError(MovementError):
    def __init__(self, message: str = "monsters detected in movement path"):
        super().__init__(message)


class PlayerStuckError(MovementError):
    def __init__(self, message: str = "player is stuck"):
        super().__init__(message)


class PlayerRoundTripError(MovementError):
    def __init__(self, message: str = "player round trip"):
        super().__init__(message)


class NoPathError(MovementError):
    def __init__(self, message: str = "path couldn't be calculated"):
        super().__init__(message)


class AreaTransitionError(MovementError):
    """Area changed mid-move but the new area never finished loading."""
    pass


# --- Recoverable: interaction and items ---

class InteractionError(BotKernelError):
    pass


class ObjectNotFoundError(InteractionError):
    pass


class ObjectTooFarError(InteractionError):
    pass


class DoorInteractionError(InteractionError, MovementError):
    pass


class PickupError(BotKernelError):
    pass


class ItemTooFarError(PickupError):
    def __init__(self, distance: int, name: str):
        self.distance = distance
        super().__init__(f"item is too far away ({distance}): {name}")


class NoLineOfSightToItemError(PickupError):
    def __init__(self, message: str = "no line of sight to item"):
        super().__init__(message)


class MonsterAroundItemError(PickupError):
    def __init__(self, message: str = "monsters detected around item"):
        super().__init__(message)


class WeaponSwapTimeoutError(BotKernelError):
    def __init__(self, message: str = "weapon swap timeout - failed to swap weapons"):
        super().__init__(message)
