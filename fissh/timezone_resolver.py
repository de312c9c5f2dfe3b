#!/usr/bin/env python3
# Copyright 2025 icecake0141
# SPDX-License-Identifier: Apache-2.0
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# This file was created or modified with the assistance of an AI (Large Language Model).
# Review required for correctness, security, and licensing.

"""
Timezone resolution for fissh.

Each session displays the time in the visitor's own timezone. The zone is
decided once, when the session starts, by a fallback chain:

1. A ``TZ`` value the client sent through SSH environment requests, if it
   names a zone the local timezone database can load.
2. A geolocation lookup of the client's address via ipinfo.io.
3. A configured default zone (UTC unless overridden).

The module is split the same way as the other network helpers:
- Pure parsing/validation functions (unit-testable without network)
- Network client (can be mocked for testing)
- Caching/retry policy (unit-testable with explicit timestamps)
"""

import ipaddress
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import requests

logger = logging.getLogger(__name__)

IPINFO_URL = "https://ipinfo.io/{ip}/json"
DEFAULT_TIMEZONE = "UTC"
LOOKUP_FAILURE_TTL_SECONDS = 300.0


class TimezoneSource(Enum):
    """Where a session's timezone came from. Shown on the about page only."""

    FROM_CLIENT_DECLARATION = "env"
    FROM_NETWORK_LOOKUP = "ip"


class TimezoneError(Exception):
    """Base class for timezone resolution failures."""


class InvalidTimezoneDeclaration(TimezoneError):
    """The declared identifier is malformed or unknown to the timezone database."""


class GeolocationLookupError(TimezoneError):
    """The address lookup failed or did not report a usable timezone."""


@dataclass(frozen=True)
class TimezoneResult:
    """
    A resolved timezone identifier and how it was obtained.

    ``defaulted`` is set when the lookup failed and the configured default
    zone stands in for the visitor's own.
    """

    identifier: str
    source: TimezoneSource
    defaulted: bool = False

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.identifier)


def load_timezone(identifier: str) -> ZoneInfo:
    """
    Load a timezone by IANA identifier.

    Args:
        identifier: Zone name such as ``Europe/Paris``

    Returns:
        The loaded ZoneInfo

    Raises:
        InvalidTimezoneDeclaration: If the name is empty, malformed or unknown
    """
    if not identifier:
        raise InvalidTimezoneDeclaration("empty timezone identifier")
    try:
        return ZoneInfo(identifier)
    except (ZoneInfoNotFoundError, ValueError, OSError) as exc:
        raise InvalidTimezoneDeclaration(f"unknown timezone {identifier!r}") from exc


def is_valid_timezone(identifier: Optional[str]) -> bool:
    """Return True if ``identifier`` resolves to a loadable timezone entry."""
    if not identifier:
        return False
    try:
        load_timezone(identifier)
    except InvalidTimezoneDeclaration:
        return False
    return True


def extract_timezone_from_env(environ: Union[Mapping[str, str], Iterable[str], None]) -> Optional[str]:
    """
    Find the client-declared ``TZ`` value.

    Accepts either a mapping of environment variables or a sequence of
    ``NAME=value`` strings. The value is returned as sent, without validation.

    Examples:
        >>> extract_timezone_from_env({"TZ": "Asia/Tokyo"})
        'Asia/Tokyo'
        >>> extract_timezone_from_env(["LANG=C", "TZ=Europe/Oslo"])
        'Europe/Oslo'
        >>> extract_timezone_from_env([]) is None
        True
    """
    if not environ:
        return None
    if isinstance(environ, Mapping):
        return environ.get("TZ")
    for entry in environ:
        if entry.startswith("TZ="):
            return entry[len("TZ=") :]
    return None


def parse_geolocation_timezone(payload: Any) -> Optional[str]:
    """
    Extract the timezone from an ipinfo.io response body.

    This is a pure function and can be tested without any network I/O.

    Examples:
        >>> parse_geolocation_timezone({"ip": "8.8.8.8", "timezone": "America/Los_Angeles"})
        'America/Los_Angeles'
        >>> parse_geolocation_timezone({"ip": "127.0.0.1", "bogon": True}) is None
        True
    """
    if not isinstance(payload, dict):
        return None
    value = payload.get("timezone")
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def fetch_geolocation(ip_address: str, token: Optional[str] = None, timeout: float = 3.0) -> Dict[str, Any]:
    """
    Fetch the ipinfo.io record for an address.

    Args:
        ip_address: IPv4 or IPv6 address string
        token: Optional ipinfo.io access token
        timeout: Request timeout in seconds

    Returns:
        Decoded JSON mapping

    Raises:
        GeolocationLookupError: On an invalid address, network error, HTTP error
            or a body that is not a JSON object
    """
    try:
        address = ipaddress.ip_address(ip_address)
    except ValueError as exc:
        raise GeolocationLookupError(f"not an IP address: {ip_address!r}") from exc

    headers = {"Accept": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"

    try:
        response = requests.get(IPINFO_URL.format(ip=address), headers=headers, timeout=timeout)
        response.raise_for_status()
        data = response.json()
    except requests.RequestException as exc:
        raise GeolocationLookupError(f"lookup for {address} failed: {exc}") from exc
    except ValueError as exc:
        raise GeolocationLookupError(f"lookup for {address} returned invalid JSON") from exc

    if not isinstance(data, dict):
        raise GeolocationLookupError(f"lookup for {address} returned {type(data).__name__}, expected an object")
    return data


def should_retry_lookup(ip_address: str, cache: Dict[str, Dict[str, Any]], now: float, failure_ttl: float) -> bool:
    """
    Determine if a geolocation lookup should be (re)issued.

    Args:
        ip_address: Address to check
        cache: Dictionary of cached lookup results
        now: Current timestamp
        failure_ttl: Time-to-live for failed lookups

    Returns:
        True if a lookup should be made, False if the cached entry stands
    """
    cached = cache.get(ip_address)
    if cached is None:
        return True
    if cached["value"] is None and (now - cached["fetched_at"]) >= failure_ttl:
        return True
    return False


class TimezoneResolver:
    """
    Resolve the display timezone for a new session.

    One resolver is shared by every session of the server process. Lookups are
    cached per address; concurrent sessions may call :meth:`resolve` at once.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        default_timezone: str = DEFAULT_TIMEZONE,
        timeout: float = 3.0,
        failure_ttl: float = LOOKUP_FAILURE_TTL_SECONDS,
        fetch: Callable[..., Dict[str, Any]] = fetch_geolocation,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not is_valid_timezone(default_timezone):
            raise ValueError(f"Default timezone '{default_timezone}' is not a known IANA name.")
        self.token = token
        self.default_timezone = default_timezone
        self.timeout = timeout
        self.failure_ttl = failure_ttl
        self._fetch = fetch
        self._clock = clock
        self._cache: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def lookup(self, ip_address: str) -> str:
        """
        Return the timezone reported for an address.

        Raises:
            GeolocationLookupError: If the lookup fails, has no timezone, or
                reports a zone the local database cannot load
        """
        now = self._clock()
        with self._lock:
            retry = should_retry_lookup(ip_address, self._cache, now, self.failure_ttl)
            cached = self._cache.get(ip_address)
        if not retry and cached is not None:
            if cached["value"] is None:
                raise GeolocationLookupError(f"lookup for {ip_address} failed recently; not retrying yet")
            return cached["value"]

        try:
            payload = self._fetch(ip_address, token=self.token, timeout=self.timeout)
            identifier = parse_geolocation_timezone(payload)
            if identifier is None:
                raise GeolocationLookupError(f"no timezone on record for {ip_address}")
            if not is_valid_timezone(identifier):
                raise GeolocationLookupError(f"lookup for {ip_address} reported unknown timezone {identifier!r}")
        except GeolocationLookupError:
            with self._lock:
                self._cache[ip_address] = {"value": None, "fetched_at": now}
            raise

        with self._lock:
            self._cache[ip_address] = {"value": identifier, "fetched_at": now}
        return identifier

    def resolve(
        self, declared_timezone: Optional[str], remote_address: str
    ) -> Tuple[TimezoneResult, Optional[TimezoneError]]:
        """
        Decide which timezone a session should display.

        Args:
            declared_timezone: ``TZ`` sent by the client, or None
            remote_address: The client's IP address

        Returns:
            Tuple of (result, error). ``error`` is None on success and a
            GeolocationLookupError when the default timezone had to be used.
            A bad declaration alone is never reported.
        """
        if declared_timezone:
            try:
                load_timezone(declared_timezone)
                return TimezoneResult(declared_timezone, TimezoneSource.FROM_CLIENT_DECLARATION), None
            except InvalidTimezoneDeclaration as exc:
                logger.debug("Ignoring declared timezone from %s: %s", remote_address, exc)

        try:
            identifier = self.lookup(remote_address)
        except GeolocationLookupError as exc:
            return TimezoneResult(self.default_timezone, TimezoneSource.FROM_NETWORK_LOOKUP, defaulted=True), exc
        return TimezoneResult(identifier, TimezoneSource.FROM_NETWORK_LOOKUP), None
