import logging
from typing import Literal, Optional

from tk700.exceptions.projector import DeviceRejected
from tk700.services import protocol
from tk700.services.device_link import DeviceLink
from tk700.services.protocol import Reply

log = logging.getLogger("tk700.client")

Direction = Literal["up", "down"]

# BenQ command names
CMD_POWER = "pow"
CMD_VOLUME = "vol"
CMD_TEMPERATURE = "tmp1"
CMD_FAN = "fan1"
CMD_PICTURE_MODE = "appmod"
CMD_BRIGHTNESS = "bri"
CMD_CONTRAST = "con"
CMD_SHARPNESS = "sharp"


class ProjectorClient:
    """
    Typed operations for the TK700 on top of a DeviceLink.

    Every call is one exchange; ordering and mutual exclusion come from the
    link. Failures are raised as ProjectorException subclasses and never
    retried here.
    """

    def __init__(self, link: DeviceLink):
        self.link = link

    async def _send(self, command: str, arg: str = protocol.QUERY) -> Reply:
        frame = await self.link.exchange(protocol.encode(command, arg), protocol.is_reply)
        return protocol.decode(command, frame)

    async def _set(self, command: str, arg) -> bool:
        reply = await self._send(command, str(arg))
        log.info("%s=%s -> %s", command, arg, reply.value)
        return True

    # ---- power ----
    async def get_power_status(self) -> Optional[bool]:
        """True/False for on/off, None when the projector gives no usable answer."""
        try:
            reply = await self._send(CMD_POWER)
        except DeviceRejected as e:
            # queries are blocked while the lamp is cooling down
            log.debug("power query rejected: %s", e.reason)
            return None
        return protocol.parse_on_off(reply)

    async def set_power(self, on: bool) -> bool:
        return await self._set(CMD_POWER, "on" if on else "off")

    # ---- readings ----
    async def get_temperature(self) -> float:
        return protocol.parse_float(await self._send(CMD_TEMPERATURE))

    async def get_fan_speed(self) -> int:
        return protocol.parse_int(await self._send(CMD_FAN))

    async def get_volume(self) -> int:
        return protocol.parse_int(await self._send(CMD_VOLUME))

    async def get_picture_mode(self) -> str:
        return (await self._send(CMD_PICTURE_MODE)).value.lower()

    async def get_brightness(self) -> int:
        return protocol.parse_int(await self._send(CMD_BRIGHTNESS))

    async def get_contrast(self) -> int:
        return protocol.parse_int(await self._send(CMD_CONTRAST))

    async def get_sharpness(self) -> int:
        return protocol.parse_int(await self._send(CMD_SHARPNESS))

    # ---- settings ----
    async def set_volume(self, level: int) -> bool:
        return await self._set(CMD_VOLUME, int(level))

    async def set_picture_mode(self, mode: str) -> bool:
        return await self._set(CMD_PICTURE_MODE, mode.strip().lower())

    async def set_brightness(self, value: int) -> bool:
        return await self._set(CMD_BRIGHTNESS, int(value))

    async def adjust_brightness(self, direction: Direction) -> bool:
        if direction not in ("up", "down"):
            raise ValueError(f"direction must be 'up' or 'down', not {direction!r}")
        return await self._set(CMD_BRIGHTNESS, "+" if direction == "up" else "-")

    async def set_contrast(self, value: int) -> bool:
        return await self._set(CMD_CONTRAST, int(value))

    async def set_sharpness(self, value: int) -> bool:
        return await self._set(CMD_SHARPNESS, int(value))

    def is_connected(self) -> bool:
        return self.link.is_connected()

    async def close(self) -> None:
        await self.link.close()
