"""A small multi-client FTP server using active-mode data connections."""

from __future__ import annotations

import argparse
import logging
import os
import selectors
import socket
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path

from miniftp.protocol import FTPError, parse_port_argument, split_command

BUFFER_SIZE = 1024
DEFAULT_PORT = 21
MAX_CLIENTS = 10

logger = logging.getLogger(__name__)


def authenticate(users_file, username: str, password: str) -> bool:
    """Check a username and password against a file of whitespace-separated pairs."""
    try:
        tokens = Path(users_file).read_text().split()
    except OSError:
        return False
    pairs = zip(tokens[0::2], tokens[1::2])
    return any(user == username and secret == password for user, secret in pairs)


@dataclass
class ClientSession:
    """State kept for one connected control connection."""

    sock: socket.socket
    cwd: str
    address: tuple | None = None
    authenticated: bool = False
    username: str = ""
    client_ip: str = ""
    client_data_port: int = 0
    closed: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def send(self, message: str) -> None:
        """Send a reply on the control connection, ignoring a vanished peer."""
        with self._lock:
            try:
                self.sock.sendall(message.encode())
            except OSError as exc:
                logger.debug("send failed: %s", exc)

    def close(self) -> None:
        self.closed = True
        try:
            self.sock.close()
        except OSError:
            pass


class FTPServer:
    """Serves FTP control connections from one thread, transfers from others."""

    data_connect_delay = 1.0
    poll_interval = 0.2

    def __init__(self, root=".", users_file=None, host="", port=DEFAULT_PORT,
                 max_clients=MAX_CLIENTS):
        self.root = Path(root).resolve()
        self.users_file = Path(users_file) if users_file is not None else self.root / "users.txt"
        self.max_clients = max_clients
        self.sessions: list[ClientSession] = []
        self._stop = threading.Event()
        self._running = False
        self._listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            self._listener.bind((host, port))
            self._listener.listen(5)
        except OSError:
            self._listener.close()
            raise
        self.address = self._listener.getsockname()

    def process_command(self, session: ClientSession, line: str) -> None:
        """Handle one control line from a client and send the reply."""
        command, arg = split_command(line)
        verb = command.upper()

        if verb == "USER":
            session.username = arg
            session.send("331 Username OK, need password.\r\n")
            logger.info("Successful username verification")
        elif verb == "PASS":
            self._login(session, arg)
        elif not session.authenticated:
            session.send("530 Not logged in.\r\n")
        elif verb == "PORT":
            try:
                session.client_ip, session.client_data_port = parse_port_argument(arg)
            except FTPError:
                session.send("501 Syntax error in parameters or arguments.\r\n")
                return
            logger.info("Port received: %s,%d", session.client_ip, session.client_data_port)
            session.send("200 PORT command successful.\r\n")
        elif verb == "PWD":
            session.send(f'257 "{session.cwd}"\r\n')
        elif verb == "CWD":
            self._change_directory(session, arg)
        elif verb in ("RETR", "STOR", "LIST"):
            threading.Thread(
                target=self._transfer, args=(session, verb, arg), daemon=True
            ).start()
        elif verb == "QUIT":
            session.send("221 Service closing control connection.\r\n")
            session.close()
            logger.info("Closed!")
        else:
            session.send("202 Command not implemented.\r\n")

    def _login(self, session: ClientSession, password: str) -> None:
        if not authenticate(self.users_file, session.username, password):
            session.send("530 Not logged in.\r\n")
            return
        session.authenticated = True
        user_dir = self.root / session.username
        try:
            user_dir.mkdir(mode=0o755, exist_ok=True)
        except OSError as exc:
            logger.warning("cannot create %s: %s", user_dir, exc)
        if user_dir.is_dir():
            session.cwd = os.path.realpath(user_dir)
        session.send("230 User logged in, proceed.\r\n")
        logger.info("Successful login")

    def _change_directory(self, session: ClientSession, arg: str) -> None:
        target = os.path.join(session.cwd, arg)
        if os.path.isdir(target) and os.access(target, os.X_OK):
            session.cwd = os.path.realpath(target)
            session.send(f"200 directory changed to {session.cwd}\r\n")
            logger.info("Changing directory to: %s", arg)
        else:
            session.send("550 No such file or directory.\r\n")

    def _transfer(self, session: ClientSession, command: str, arg: str) -> None:
        logger.info("File okay, beginning data connections")
        time.sleep(self.data_connect_delay)
        try:
            data_sock = socket.create_connection((session.client_ip, session.client_data_port))
        except (OSError, OverflowError):
            session.send("425 Can't open data connection.\r\n")
            return
        logger.info("Connection Successful")

        with data_sock:
            session.send("150 Opening data connection.\r\n")
            path = os.path.join(session.cwd, arg)
            if command == "LIST":
                try:
                    with os.scandir(session.cwd) as entries:
                        for entry in entries:
                            if entry.is_file(follow_symlinks=False):
                                data_sock.sendall(f"{entry.name}\n".encode())
                except OSError as exc:
                    logger.warning("listing failed: %s", exc)
            elif command == "RETR":
                try:
                    source = open(path, "rb")
                except OSError:
                    session.send("550 File not found.\r\n")
                    return
                with source:
                    data_sock.sendfile(source)
            else:
                try:
                    target = open(path, "wb")
                except OSError:
                    session.send("550 Cannot write file.\r\n")
                    return
                with target:
                    while chunk := data_sock.recv(BUFFER_SIZE):
                        target.write(chunk)

        session.send("226 Transfer complete.\r\n")
        logger.info("226 Transfer complete")

    def serve_forever(self) -> None:
        """Accept and serve clients until shutdown() is called."""
        self._running = True
        selector = selectors.DefaultSelector()
        selector.register(self._listener, selectors.EVENT_READ, None)
        try:
            while not self._stop.is_set():
                for key, _ in selector.select(timeout=self.poll_interval):
                    if key.data is None:
                        self._accept(selector)
                    else:
                        self._serve(selector, key.data)
        finally:
            selector.close()
            self._running = False
            self._close_all()

    def _accept(self, selector: selectors.BaseSelector) -> None:
        try:
            sock, address = self._listener.accept()
        except OSError:
            return
        if len(self.sessions) >= self.max_clients:
            logger.warning("Too many clients, refusing %s", address)
            sock.close()
            return
        session = ClientSession(sock=sock, cwd=str(self.root), address=address)
        self.sessions.append(session)
        selector.register(sock, selectors.EVENT_READ, session)
        session.send("220 Service ready for new user.\r\n")
        logger.info("Connection established with %s:%d", *address[:2])

    def _serve(self, selector: selectors.BaseSelector, session: ClientSession) -> None:
        try:
            data = session.sock.recv(BUFFER_SIZE - 1)
        except OSError:
            data = b""
        if data:
            self.process_command(session, data.decode("utf-8", "replace"))
        if not data or session.closed:
            self._drop(selector, session)

    def _drop(self, selector: selectors.BaseSelector, session: ClientSession) -> None:
        try:
            selector.unregister(session.sock)
        except (KeyError, ValueError):
            pass
        session.close()
        if session in self.sessions:
            self.sessions.remove(session)

    def _close_all(self) -> None:
        for session in self.sessions:
            session.close()
        self.sessions.clear()
        self._listener.close()

    def shutdown(self) -> None:
        """Stop serve_forever() and release all sockets."""
        self._stop.set()
        if not self._running:
            self._close_all()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Run the FTP server.")
    parser.add_argument("--host", default="", help="address to listen on")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="control port")
    parser.add_argument("--root", default=".", help="directory holding user directories")
    parser.add_argument("--users", default=None, help="file of 'username password' pairs")
    parser.add_argument("--max-clients", type=int, default=MAX_CLIENTS)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(message)s")
    try:
        server = FTPServer(args.root, args.users, args.host, args.port, args.max_clients)
    except OSError as exc:
        parser.exit(1, f"cannot start server: {exc}\n")
    logger.info("FTP Server started on port %d...", server.address[1])
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        server.shutdown()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())