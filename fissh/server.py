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
SSH server for fissh.

Accepts connections with paramiko, gives every connection its own thread and
SessionController, and feeds that controller a serialized stream of key,
resize and tick events. Resize notifications arrive on paramiko's transport
thread and are queued so only the session thread ever touches its controller.
"""

import logging
import os
import queue
import socket
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import paramiko
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from fissh.art_catalog import ArtCatalog
from fissh.input_keys import KeyDecoder
from fissh.session import DisplayWindow, KeyPress, SessionController, Tick, Viewport, ViewportResize
from fissh.timezone_resolver import TimezoneResolver
from fissh.ui_render import ENTER_ALT_SCREEN, EXIT_ALT_SCREEN, ScreenWriter, render_screen

logger = logging.getLogger(__name__)

RECV_BYTES = 1024
NO_PTY_MESSAGE = b"fissh needs an interactive terminal. Try: ssh -t <host>\r\n"


@dataclass
class ServerSettings:
    """Runtime settings for the SSH server."""

    host: str = "localhost"
    port: int = 23234
    host_key_path: str = ".ssh/id_ed25519"
    tick_interval: float = 0.1
    shutdown_grace: float = 30.0
    window: DisplayWindow = field(default_factory=DisplayWindow)
    accept_timeout: float = 0.5
    handshake_timeout: float = 20.0


def _as_text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def generate_host_key(path: str) -> None:
    """Write a new Ed25519 host key in OpenSSH format, readable by owner only."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, mode=0o700, exist_ok=True)
    key = Ed25519PrivateKey.generate()
    data = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.OpenSSH,
        serialization.NoEncryption(),
    )
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "wb") as fh:
        fh.write(data)
    logger.info("Generated new host key at '%s'", path)


def load_host_key(path: str) -> paramiko.PKey:
    """Load the server's Ed25519 host key, generating it on first run."""
    if not os.path.exists(path):
        generate_host_key(path)
    return paramiko.Ed25519Key.from_private_key_file(path)


class SessionServerInterface(paramiko.ServerInterface):
    """
    paramiko callbacks for one connection.

    Anyone may connect: no credentials are checked. Only interactive shell
    sessions are offered.
    """

    def __init__(self) -> None:
        self.shell_requested = threading.Event()
        self.pty_size: Optional[Tuple[int, int]] = None
        self.term: Optional[str] = None
        self.environ: Dict[str, str] = {}
        self.resizes: "queue.Queue[ViewportResize]" = queue.Queue()

    def get_allowed_auths(self, username: str) -> str:
        return "none,password,publickey"

    def check_auth_none(self, username: str) -> int:
        return paramiko.AUTH_SUCCESSFUL

    def check_auth_password(self, username: str, password: str) -> int:
        return paramiko.AUTH_SUCCESSFUL

    def check_auth_publickey(self, username: str, key: paramiko.PKey) -> int:
        return paramiko.AUTH_SUCCESSFUL

    def check_channel_request(self, kind: str, chanid: int) -> int:
        if kind == "session":
            return paramiko.OPEN_SUCCEEDED
        return paramiko.OPEN_FAILED_ADMINISTRATIVELY_PROHIBITED

    def check_channel_pty_request(
        self,
        channel: paramiko.Channel,
        term: Any,
        width: int,
        height: int,
        pixelwidth: int,
        pixelheight: int,
        modes: Any,
    ) -> bool:
        self.term = _as_text(term)
        self.pty_size = (width, height)
        return True

    def check_channel_env_request(self, channel: paramiko.Channel, name: Any, value: Any) -> bool:
        self.environ[_as_text(name)] = _as_text(value)
        return True

    def check_channel_shell_request(self, channel: paramiko.Channel) -> bool:
        self.shell_requested.set()
        return True

    def check_channel_exec_request(self, channel: paramiko.Channel, command: Any) -> bool:
        return False

    def check_channel_window_change_request(
        self,
        channel: paramiko.Channel,
        width: int,
        height: int,
        pixelwidth: int,
        pixelheight: int,
    ) -> bool:
        self.resizes.put(ViewportResize(width, height))
        return True


def _drain(resizes: "queue.Queue[ViewportResize]") -> List[ViewportResize]:
    events = []
    while True:
        try:
            events.append(resizes.get_nowait())
        except queue.Empty:
            return events


def run_event_loop(
    channel: Any,
    controller: SessionController,
    resizes: "queue.Queue[ViewportResize]",
    stop_event: threading.Event,
    tick_interval: float,
    use_color: bool = True,
) -> None:
    """
    Drive one session until it quits, the client leaves, or the server stops.

    The loop is the session's only execution context: resizes queued by the
    transport thread, decoded keys and periodic ticks are all handled here,
    one at a time. A frame is written after every event.
    """
    decoder = KeyDecoder()
    screen = ScreenWriter()

    def draw(content: str) -> None:
        viewport = controller.state.viewport
        lines = render_screen(content, viewport.width, viewport.height, use_color)
        channel.sendall(screen.update(lines).encode("utf-8"))

    channel.settimeout(tick_interval)
    channel.sendall(ENTER_ALT_SCREEN.encode("utf-8"))
    try:
        draw(controller.handle(Tick()))
        next_tick = time.monotonic() + tick_interval
        while controller.running and not stop_event.is_set():
            for resize in _drain(resizes):
                content = controller.handle(resize)
                screen.invalidate()
                draw(content)

            try:
                data: Optional[bytes] = channel.recv(RECV_BYTES)
            except socket.timeout:
                data = None
            if data == b"":
                logger.debug("Client closed the channel")
                break

            keys = decoder.feed(data) if data else decoder.flush()
            for key in keys:
                content = controller.handle(KeyPress(key))
                if not controller.running:
                    break
                draw(content)

            if controller.running and time.monotonic() >= next_tick:
                draw(controller.handle(Tick()))
                next_tick = time.monotonic() + tick_interval
    finally:
        controller.stop()
        try:
            channel.sendall(EXIT_ALT_SCREEN.encode("utf-8"))
        except (OSError, EOFError, paramiko.SSHException):
            pass


class TerminalSession:
    """One connected client, from SSH handshake to disconnect."""

    def __init__(
        self,
        sock: socket.socket,
        address: Tuple[Any, ...],
        host_key: paramiko.PKey,
        catalog: ArtCatalog,
        resolver: TimezoneResolver,
        settings: ServerSettings,
        stop_event: threading.Event,
    ) -> None:
        self.sock = sock
        self.remote_address = str(address[0])
        self.host_key = host_key
        self.catalog = catalog
        self.resolver = resolver
        self.settings = settings
        self.stop_event = stop_event
        self.transport: Optional[paramiko.Transport] = None

    def run(self) -> None:
        started = time.monotonic()
        try:
            self._run()
        except (paramiko.SSHException, EOFError, OSError) as exc:
            logger.info("Session from %s ended with error: %s", self.remote_address, exc)
        finally:
            self.close()
            logger.info("Session from %s closed after %.1fs", self.remote_address, time.monotonic() - started)

    def _run(self) -> None:
        self.transport = paramiko.Transport(self.sock)
        self.transport.add_server_key(self.host_key)
        interface = SessionServerInterface()
        self.transport.start_server(server=interface)

        channel = self.transport.accept(timeout=self.settings.handshake_timeout)
        if channel is None:
            logger.info("No session channel opened by %s", self.remote_address)
            return
        try:
            if not interface.shell_requested.wait(timeout=self.settings.handshake_timeout):
                logger.info("No shell requested by %s", self.remote_address)
                return
            if interface.pty_size is None:
                channel.sendall(NO_PTY_MESSAGE)
                return

            tz_result, error = self.resolver.resolve(interface.environ.get("TZ"), self.remote_address)
            if error is not None:
                logger.warning(
                    "Degraded session start for %s: %s; using %s", self.remote_address, error, tz_result.identifier
                )
            logger.info(
                "Session from %s (term=%s, %dx%d, timezone=%s via %s)",
                self.remote_address,
                interface.term,
                interface.pty_size[0],
                interface.pty_size[1],
                tz_result.identifier,
                tz_result.source.value,
            )

            controller = SessionController(
                tz_result,
                self.remote_address,
                Viewport(*interface.pty_size),
                self.catalog.select_fitting,
                window=self.settings.window,
                use_color=True,
            )
            run_event_loop(
                channel,
                controller,
                interface.resizes,
                self.stop_event,
                self.settings.tick_interval,
            )
        finally:
            channel.close()

    def close(self) -> None:
        """Tear the connection down; safe to call more than once."""
        if self.transport is not None:
            self.transport.close()
        else:
            try:
                self.sock.close()
            except OSError:
                pass


class FisshServer:
    """
    Listening SSH server.

    Each accepted connection runs in its own daemon thread. ``shutdown``
    stops accepting, lets live sessions finish for up to the grace period,
    then closes whatever is left.
    """

    def __init__(
        self,
        settings: ServerSettings,
        catalog: ArtCatalog,
        resolver: TimezoneResolver,
        host_key: paramiko.PKey,
    ) -> None:
        self.settings = settings
        self.catalog = catalog
        self.resolver = resolver
        self.host_key = host_key
        self.stop_event = threading.Event()
        self._listener: Optional[socket.socket] = None
        self._sessions: Dict[threading.Thread, TerminalSession] = {}
        self._lock = threading.Lock()

    @property
    def address(self) -> Optional[Tuple[Any, ...]]:
        if self._listener is None:
            return None
        return self._listener.getsockname()

    def bind(self) -> None:
        self._listener = socket.create_server((self.settings.host, self.settings.port))
        self._listener.settimeout(self.settings.accept_timeout)

    def active_sessions(self) -> int:
        with self._lock:
            return sum(1 for thread in self._sessions if thread.is_alive())

    def serve_forever(self) -> None:
        """Accept connections until ``stop_event`` is set."""
        if self._listener is None:
            self.bind()
        assert self._listener is not None
        logger.info("Starting SSH server on %s:%s", self.settings.host, self.settings.port)
        while not self.stop_event.is_set():
            try:
                sock, address = self._listener.accept()
            except socket.timeout:
                continue
            except OSError as exc:
                if self.stop_event.is_set():
                    break
                logger.error("Could not accept connection: %s", exc)
                continue
            self._start_session(sock, address)

    def _start_session(self, sock: socket.socket, address: Tuple[Any, ...]) -> None:
        session = TerminalSession(
            sock, address, self.host_key, self.catalog, self.resolver, self.settings, self.stop_event
        )
        thread = threading.Thread(target=self._run_session, args=(session,), daemon=True)
        with self._lock:
            self._sessions[thread] = session
        thread.start()

    def _run_session(self, session: TerminalSession) -> None:
        try:
            session.run()
        finally:
            with self._lock:
                self._sessions.pop(threading.current_thread(), None)

    def shutdown(self, grace: Optional[float] = None) -> None:
        """Stop accepting and wind down live sessions."""
        logger.info("Stopping SSH server")
        self.stop_event.set()
        if self._listener is not None:
            self._listener.close()
        grace = self.settings.shutdown_grace if grace is None else grace
        deadline = time.monotonic() + grace
        with self._lock:
            sessions = list(self._sessions.items())
        for thread, _session in sessions:
            thread.join(timeout=max(0.0, deadline - time.monotonic()))
        for thread, session in sessions:
            if thread.is_alive():
                logger.warning("Forcing close of session from %s", session.remote_address)
                session.close()
