import logging
import sys
from typing import Optional, Sequence

logger = logging.getLogger(__name__)

RUN_KEY = r"Software\Microsoft\Windows\CurrentVersion\Run"
APP_VALUE_NAME = "CelestisAIAvatar"

def _quote(part: str) -> str:
    return f'"{part}"' if " " in part and not part.startswith('"') else part

def autostart_command(executable: str, args: Sequence[str] = ()) -> str:
    """Command line stored in the Run key."""
    return " ".join(_quote(p) for p in [executable, *args])

def enable_autostart(executable: Optional[str] = None, args: Sequence[str] = ()) -> bool:
    """Register the app to run at Windows login. No-op elsewhere."""
    if sys.platform != "win32":
        logger.debug("Autostart is only supported on Windows")
        return False

    import winreg

    command = autostart_command(executable or sys.executable, args)
    try:
        with winreg.OpenKey(winreg.HKEY_CURRENT_USER, RUN_KEY, 0, winreg.KEY_SET_VALUE) as key:
            winreg.SetValueEx(key, APP_VALUE_NAME, 0, winreg.REG_SZ, command)
    except OSError as e:
        logger.warning(f"Failed to set autostart: {e}")
        return False

    logger.info("Autostart enabled for Windows login")
    return True

def disable_autostart() -> bool:
    if sys.platform != "win32":
        return False

    import winreg

    try:
        with winreg.OpenKey(winreg.HKEY_CURRENT_USER, RUN_KEY, 0, winreg.KEY_SET_VALUE) as key:
            winreg.DeleteValue(key, APP_VALUE_NAME)
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning(f"Failed to remove autostart: {e}")
        return False
    logger.info("Autostart disabled")
    return True
