# Copyright 2026 The glustermgmt Authors
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
"""
Checks on the values of volume and bitrot options.

Options listed in :data:`VOLUME_OPTIONS` have their value checked before
anything is sent to the cluster. Other options are passed through as given,
the cluster remains the judge of those.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Mapping, Optional

from glustermgmt.errors import InvalidOption, ParseError
from glustermgmt.protocol.parser import translate_to_bytes

Check = Callable[[str, str], str]

TOGGLE_ON = ("on", "true", "yes", "enable", "1")
TOGGLE_OFF = ("off", "false", "no", "disable", "0")
LOG_LEVELS = ("DEBUG", "WARNING", "ERROR", "INFO", "CRITICAL", "NONE", "TRACE")

QUOTA_OPTION = "features.quota"
INODE_QUOTA_OPTION = "features.inode-quota"
BITROT_OPTION = "features.bitrot"

SCRUB_THROTTLE = "scrub-throttle"
SCRUB_FREQUENCY = "scrub-frequency"
SCRUB = "scrub"


def _text(option: str, value: str) -> str:
    if not value.strip():
        raise InvalidOption(option, value, "empty value")
    return value


def _toggle(option: str, value: str) -> str:
    if value.lower() not in TOGGLE_ON + TOGGLE_OFF:
        raise InvalidOption(option, value, "expected on or off")
    return value.lower()


def _choice(*choices: str) -> Check:

    def check(option: str, value: str) -> str:
        if value.lower() not in choices:
            raise InvalidOption(
                option, value, f"expected one of {', '.join(choices)}"
            )
        return value.lower()

    return check


def _log_level(option: str, value: str) -> str:
    if value.upper() not in LOG_LEVELS:
        raise InvalidOption(
            option, value, f"expected one of {', '.join(LOG_LEVELS)}"
        )
    return value.upper()


def _int(minimum: Optional[int] = None, maximum: Optional[int] = None) -> Check:

    def check(option: str, value: str) -> str:
        try:
            n = int(value)
        except ValueError:
            raise InvalidOption(option, value, "expected an integer")
        if minimum is not None and n < minimum:
            raise InvalidOption(option, value, f"lower than {minimum}")
        if maximum is not None and n > maximum:
            raise InvalidOption(option, value, f"greater than {maximum}")
        return str(n)

    return check


def _size(option: str, value: str) -> str:
    if value.isdigit() or translate_to_bytes(value) is not None:
        return value
    raise InvalidOption(option, value, "expected a size such as 4MB")


def _percent_or_size(option: str, value: str) -> str:
    if value.endswith("%"):
        if not value[:-1].isdigit() or int(value[:-1]) > 100:
            raise InvalidOption(option, value, "expected a percentage up to 100%")
        return value
    return _size(option, value)


VOLUME_OPTIONS: Dict[str, Check] = {
    "auth.allow": _text,
    "auth.reject": _text,
    "auth.ssl-allow": _text,
    "client.grace-timeout": _int(10, 1800),
    "client.ssl": _toggle,
    "cluster.data-self-heal-algorithm": _choice("full", "diff", "reset"),
    "cluster.ensure-durability": _toggle,
    "cluster.favorite-child-policy": _choice(
        "ctime", "none", "majority", "mtime", "size"
    ),
    "cluster.min-free-disk": _percent_or_size,
    "cluster.self-heal-daemon": _toggle,
    "cluster.self-heal-window-size": _int(0, 1025),
    "cluster.stripe-block-size": _size,
    "diagnostics.brick-log-level": _log_level,
    "diagnostics.client-log-level": _log_level,
    "diagnostics.count-fop-hits": _toggle,
    "diagnostics.dump-fd-stats": _toggle,
    "diagnostics.fop-sample-buf-size": _int(0),
    "diagnostics.fop-sample-interval": _int(0),
    "diagnostics.latency-measurement": _toggle,
    "diagnostics.stats-dnscache-ttl-sec": _int(0),
    "diagnostics.stats-dump-interval": _int(0),
    "features.lock-heal": _toggle,
    "features.quota-timeout": _int(0),
    "features.read-only": _toggle,
    "geo-replication.indexing": _toggle,
    "network.frame-timeout": _int(0),
    "nfs.addr-namelookup": _toggle,
    "nfs.disable": _toggle,
    "nfs.enable-ino32": _toggle,
    "nfs.export-dir": _text,
    "nfs.export-volumes": _toggle,
    "nfs.ports-insecure": _toggle,
    "nfs.register-with-portmap": _toggle,
    "nfs.rpc-auth-null": _toggle,
    "nfs.rpc-auth-unix": _toggle,
    "nfs.trusted-sync": _toggle,
    "nfs.trusted-write": _toggle,
    "nfs.volume-access": _choice("read-only", "read-write"),
    "performance.cache-max-file-size": _size,
    "performance.cache-min-file-size": _size,
    "performance.cache-refresh-timeout": _int(0, 61),
    "performance.cache-size": _size,
    "performance.flush-behind": _toggle,
    "performance.io-thread-count": _int(1, 64),
    "performance.parallel-readdir": _toggle,
    "performance.rda-cache-limit": _size,
    "performance.readdir-ahead": _toggle,
    "performance.write-behind-window-size": _size,
    "server.allow-insecure": _toggle,
    "server.grace-timeout": _int(10, 1800),
    "server.ssl": _toggle,
    "server.statedump-path": _text,
    "ssl.certificate-depth": _int(0),
    "ssl.cipher-list": _text,
    "storage.health-check-interval": _int(0),
}

BITROT_OPTIONS: Dict[str, Check] = {
    SCRUB_THROTTLE: _choice("aggressive", "lazy", "normal"),
    SCRUB_FREQUENCY: _choice("hourly", "daily", "weekly", "biweekly", "monthly"),
    SCRUB: _choice("pause", "resume", "status", "ondemand"),
}


def check_option(option: str, value: Any) -> str:
    """
    Returns the value to send for a volume option, raising InvalidOption
    when a known option is given a value it cannot take.
    """
    value = str(value)
    check = VOLUME_OPTIONS.get(option)
    if check is None:
        return value
    return check(option, value)


def check_options(options: Mapping[str, Any]) -> Dict[str, str]:
    return {k: check_option(k, v) for k, v in options.items()}


def check_bitrot_option(option: str, value: Any) -> str:
    check = BITROT_OPTIONS.get(option)
    if check is None:
        raise InvalidOption(
            option, value,
            f"not a bitrot option, expected one of {', '.join(BITROT_OPTIONS)}"
        )
    return check(option, str(value))


def check_size(option: str, value: Any) -> str:
    """
    Sizes are given in bytes or with a unit, as in ``10GB``.
    """
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise InvalidOption(option, value, "expected a size such as 10GB")
    if isinstance(value, int):
        if value <= 0:
            raise InvalidOption(option, value, "expected a positive size")
        return str(value)
    return _size(option, value)


def is_enabled(option: str, value: Optional[str]) -> bool:
    """
    Reads a toggle reported by the cluster. An option the volume does not
    list is off.
    """
    if value is None:
        return False
    if value.lower() in TOGGLE_ON:
        return True
    if value.lower() in TOGGLE_OFF:
        return False
    raise ParseError(option, value)
