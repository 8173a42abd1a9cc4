"""Device context bound to issued tokens."""

import hashlib
import ipaddress
import re
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DeviceClass(str, Enum):
    MOBILE = "mobile"
    TABLET = "tablet"
    DESKTOP = "desktop"


class Platform(str, Enum):
    WINDOWS = "Windows"
    MACOS = "macOS"
    LINUX = "Linux"
    ANDROID = "Android"
    IOS = "iOS"
    UNIX = "Unix"
    OTHER = "Other"


class Browser(str, Enum):
    CHROME = "Chrome"
    FIREFOX = "Firefox"
    SAFARI = "Safari"
    EDGE = "Edge"
    OPERA = "Opera"
    INTERNET_EXPLORER = "Internet Explorer"
    CHROMIUM = "Chromium"
    OTHER = "Other"


# Tablets are checked first because most tablet UAs also look mobile
_TABLET_PATTERN = re.compile(r"iPad|Android.*Tablet|Windows.*Touch", re.IGNORECASE)
_MOBILE_PATTERN = re.compile(r"Mobile|Android|iPhone|iPod|Windows Phone|BlackBerry", re.IGNORECASE)

# First match wins; group 1 carries the OS version where the UA exposes one
_PLATFORM_PATTERNS: list[tuple[re.Pattern[str], Platform]] = [
    (re.compile(r"iPad.*CPU OS ([0-9_]+)", re.IGNORECASE), Platform.IOS),
    (re.compile(r"iPhone.*OS ([0-9_]+)", re.IGNORECASE), Platform.IOS),
    (re.compile(r"Android ([0-9.]+)", re.IGNORECASE), Platform.ANDROID),
    (re.compile(r"Windows NT ([0-9.]+)", re.IGNORECASE), Platform.WINDOWS),
    (re.compile(r"Mac OS X ([0-9_.]+)", re.IGNORECASE), Platform.MACOS),
    (re.compile(r"(Linux)", re.IGNORECASE), Platform.LINUX),
    (re.compile(r"(FreeBSD|OpenBSD|NetBSD|SunOS)", re.IGNORECASE), Platform.UNIX),
]

# Order matters: Edge and Opera embed "Chrome/", Chrome embeds "Safari/"
_BROWSER_PATTERNS: list[tuple[re.Pattern[str], Browser]] = [
    (re.compile(r"Edg(?:e|A|iOS)?/([0-9.]+)", re.IGNORECASE), Browser.EDGE),
    (re.compile(r"(?:OPR|Opera)/([0-9.]+)", re.IGNORECASE), Browser.OPERA),
    (re.compile(r"Chromium/([0-9.]+)", re.IGNORECASE), Browser.CHROMIUM),
    (re.compile(r"(?:Chrome|CriOS)/([0-9.]+)", re.IGNORECASE), Browser.CHROME),
    (re.compile(r"(?:Firefox|FxiOS)/([0-9.]+)", re.IGNORECASE), Browser.FIREFOX),
    (re.compile(r"Version/([0-9.]+).*Safari/", re.IGNORECASE), Browser.SAFARI),
    (re.compile(r"(?:MSIE |Trident/.*rv:)([0-9.]+)", re.IGNORECASE), Browser.INTERNET_EXPLORER),
]

_DEVICE_ID_PATTERN = r"^[a-zA-Z0-9_-]+$"
MAX_USER_AGENT_LENGTH = 1000
MAX_VERSION_LENGTH = 50


class DeviceInfo(BaseModel):
    """Immutable description of the client a token was issued to.

    The fingerprint deliberately excludes the IP address so that a device
    keeps the same fingerprint while roaming between networks.
    """

    model_config = ConfigDict(frozen=True)

    device_id: str = Field(min_length=1, max_length=255, pattern=_DEVICE_ID_PATTERN)
    device_name: str = Field(min_length=1, max_length=255)
    user_agent: str = Field(default="", max_length=MAX_USER_AGENT_LENGTH)
    ip_address: str
    platform: Platform = Platform.OTHER
    browser: Browser = Browser.OTHER
    browser_version: str | None = Field(default=None, max_length=MAX_VERSION_LENGTH)
    os_version: str | None = Field(default=None, max_length=MAX_VERSION_LENGTH)
    device_class: DeviceClass = DeviceClass.DESKTOP

    @field_validator("device_name")
    @classmethod
    def validate_device_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Device name cannot be blank")
        return v

    @field_validator("ip_address")
    @classmethod
    def validate_ip_address(cls, v: str) -> str:
        try:
            ipaddress.ip_address(v)
        except ValueError as e:
            raise ValueError(f"Invalid IP address: {v!r}") from e
        return v

    @classmethod
    def from_user_agent(
        cls,
        user_agent: str,
        ip_address: str,
        device_id: str | None = None,
        device_name: str | None = None,
    ) -> "DeviceInfo":
        """Build a DeviceInfo by parsing a User-Agent header.

        Missing device_id/device_name are derived from the parsed data. Over-long
        headers are truncated rather than rejected.
        """
        user_agent = user_agent[:MAX_USER_AGENT_LENGTH]
        parsed = parse_user_agent(user_agent)
        if device_id is None:
            device_id = generate_device_id(user_agent, ip_address)
        if device_name is None:
            device_name = (
                f"{parsed['platform'].value} {parsed['device_class'].value.title()} "
                f"({parsed['browser'].value})"
            )
        return cls(
            device_id=device_id,
            device_name=device_name,
            user_agent=user_agent,
            ip_address=ip_address,
            **parsed,
        )

    @property
    def is_mobile(self) -> bool:
        return self.device_class is DeviceClass.MOBILE

    @property
    def is_tablet(self) -> bool:
        return self.device_class is DeviceClass.TABLET

    @property
    def is_desktop(self) -> bool:
        return self.device_class is DeviceClass.DESKTOP

    @property
    def fingerprint(self) -> str:
        data = f"{self.platform.value}|{self.browser.value}|{self.device_class.value}"
        return hashlib.sha256(data.encode("utf-8")).hexdigest()

    @property
    def full_platform(self) -> str:
        if self.os_version:
            return f"{self.platform.value} {self.os_version}"
        return self.platform.value

    @property
    def full_browser(self) -> str:
        if self.browser_version:
            return f"{self.browser.value} {self.browser_version}"
        return self.browser.value

    @property
    def masked_ip(self) -> str:
        """IP address with the host part hidden, safe for display and logs."""
        addr = ipaddress.ip_address(self.ip_address)
        if addr.version == 4:
            parts = self.ip_address.split(".")
            parts[3] = "xxx"
            return ".".join(parts)
        groups = addr.exploded.split(":")
        prefix = ":".join(group.lstrip("0") or "0" for group in groups[:2])
        return f"{prefix}::xxxx"

    def matches(self, other: "DeviceInfo") -> bool:
        """Whether two snapshots describe the same device at the same address."""
        return self.device_id == other.device_id and self.ip_address == other.ip_address

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump(mode="json")
        data["fingerprint"] = self.fingerprint
        return data

    def to_summary(self) -> dict[str, str]:
        return {
            "device_id": self.device_id,
            "device_name": self.device_name,
            "platform": self.full_platform,
            "browser": self.full_browser,
            "device_type": self.device_class.value,
            "ip_address_masked": self.masked_ip,
        }

    def __str__(self) -> str:
        return (
            f"DeviceInfo(id={self.device_id}, name={self.device_name}, "
            f"type={self.device_class.value}, platform={self.platform.value}, "
            f"browser={self.browser.value}, ip={self.masked_ip})"
        )


def parse_user_agent(user_agent: str) -> dict[str, Any]:
    """Extract platform, browser and device class from a User-Agent string."""
    if _TABLET_PATTERN.search(user_agent):
        device_class = DeviceClass.TABLET
    elif _MOBILE_PATTERN.search(user_agent):
        device_class = DeviceClass.MOBILE
    else:
        device_class = DeviceClass.DESKTOP

    platform = Platform.OTHER
    os_version = None
    for pattern, candidate in _PLATFORM_PATTERNS:
        match = pattern.search(user_agent)
        if match:
            platform = candidate
            if candidate not in (Platform.LINUX, Platform.UNIX):
                os_version = match.group(1).replace("_", ".")[:MAX_VERSION_LENGTH]
            break

    browser = Browser.OTHER
    browser_version = None
    for pattern, candidate in _BROWSER_PATTERNS:
        match = pattern.search(user_agent)
        if match:
            browser = candidate
            browser_version = match.group(1)[:MAX_VERSION_LENGTH]
            break

    return {
        "platform": platform,
        "os_version": os_version,
        "browser": browser,
        "browser_version": browser_version,
        "device_class": device_class,
    }


def generate_device_id(user_agent: str, ip_address: str) -> str:
    """Derive a stable-per-day device id from the UA and address."""
    data = f"{user_agent}{ip_address}{datetime.now(UTC).date().isoformat()}"
    return "dev_" + hashlib.sha256(data.encode("utf-8")).hexdigest()[:32]
