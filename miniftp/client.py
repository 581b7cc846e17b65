"""Interactive FTP client that receives data over active-mode connections."""

from __future__ import annotations

import argparse
import codecs
import ipaddress
import os
import socket
import subprocess
import sys
from typing import Callable, TextIO

from miniftp.protocol import FTPError, format_port_argument, reply_code

BUFFER_SIZE = 1024
SERVER_PORT = 21
CLIENT_PORT_START = 1024
PORT_ATTEMPTS = 100
DATA_COMMANDS = ("RETR", "STOR", "LIST")


class FTPClient:
    """A control connection to an FTP server plus the transfers made over it.

    Every reply the client reads, and the text of directory listings, is
    handed to ``echo`` when it is set.
    """

    timeout: float | None = 30.0

    def __init__(self, host, port=SERVER_PORT):
        self.host = host
        self.port = port
        self.echo: Callable[[str], object] | None = None
        self._sock: socket.socket | None = None
        self._pending = b""

    def __enter__(self) -> FTPClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _emit(self, text: str) -> None:
        if self.echo is not None:
            self.echo(text)

    def _require_connection(self) -> socket.socket:
        if self._sock is None:
            raise FTPError("not connected")
        return self._sock

    def _command(self, line: str) -> str:
        self.send_command(line)
        reply = self.receive_response()
        self._emit(reply)
        return reply

    @staticmethod
    def _expect(reply: str, code: int) -> None:
        actual = reply_code(reply)
        if actual != code:
            raise FTPError(reply.strip(), code=actual)

    def connect(self) -> str:
        """Open the control connection and return the server's welcome reply."""
        try:
            ipaddress.IPv4Address(self.host)
        except ValueError:
            raise FTPError(f"Invalid address: {self.host!r}") from None
        try:
            self._sock = socket.create_connection((self.host, self.port), timeout=self.timeout)
        except OSError as exc:
            raise FTPError(f"Connection failed: {exc}") from exc
        try:
            welcome = self.receive_response()
        except FTPError:
            self.close()
            raise
        self._emit(welcome)
        return welcome

    def login(self, username: str, password: str) -> str:
        """Send USER and PASS; return the 230 reply or raise FTPError."""
        reply = self._command(f"USER {username}")
        self._expect(reply, 331)
        reply = self._command(f"PASS {password}")
        self._expect(reply, 230)
        return reply

    def send_command(self, command: str) -> None:
        """Send one command line; the CRLF terminator is added here."""
        sock = self._require_connection()
        try:
            sock.sendall(f"{command}\r\n".encode())
        except OSError as exc:
            raise FTPError(f"Send failed: {exc}") from exc

    def receive_response(self) -> str:
        """Read the next reply line, CRLF included."""
        sock = self._require_connection()
        while b"\r\n" not in self._pending and len(self._pending) < BUFFER_SIZE - 1:
            try:
                chunk = sock.recv(BUFFER_SIZE - 1 - len(self._pending))
            except OSError as exc:
                raise FTPError(f"Receive failed: {exc}") from exc
            if not chunk:
                break
            self._pending += chunk
        if not self._pending:
            raise FTPError("No response from server")
        head, separator, rest = self._pending.partition(b"\r\n")
        self._pending = rest
        return (head + separator).decode("utf-8", "replace")

    def open_data_socket(self) -> socket.socket:
        """Listen on a local port, announce it with PORT and return the listener."""
        control = self._require_connection()
        data_sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        for port in range(CLIENT_PORT_START, CLIENT_PORT_START + PORT_ATTEMPTS):
            try:
                data_sock.bind(("", port))
                break
            except OSError:
                continue
        else:
            data_sock.close()
            raise FTPError("Failed to bind data socket")
        try:
            data_sock.listen(1)
            local_ip = control.getsockname()[0]
            reply = self._command(f"PORT {format_port_argument(local_ip, port)}")
            self._expect(reply, 200)
        except OSError as exc:
            data_sock.close()
            raise FTPError(f"Listen failed: {exc}") from exc
        except FTPError:
            data_sock.close()
            raise
        data_sock.settimeout(self.timeout)
        return data_sock

    def transfer(self, command: str, filename: str = "") -> str:
        """Run RETR, STOR or LIST over a fresh data connection.

        Returns the server's reply after the transfer.
        """
        if command not in DATA_COMMANDS:
            raise ValueError(f"not a data transfer command: {command!r}")
        with self.open_data_socket() as data_sock:
            line = "LIST" if command == "LIST" else f"{command} {filename}"
            reply = self._command(line)
            self._expect(reply, 150)
            try:
                conn, _ = data_sock.accept()
            except OSError as exc:
                raise FTPError(f"Accept failed: {exc}") from exc
            with conn:
                conn.settimeout(self.timeout)
                if command == "RETR":
                    self._download(conn, filename)
                elif command == "STOR":
                    self._upload(conn, filename)
                else:
                    self._list(conn)
        reply = self.receive_response()
        self._emit(reply)
        return reply

    def _download(self, conn: socket.socket, filename: str) -> None:
        try:
            target = open(filename, "wb")
        except OSError as exc:
            raise FTPError(f"Failed to open local file for writing: {exc}") from exc
        with target:
            try:
                while chunk := conn.recv(BUFFER_SIZE):
                    target.write(chunk)
            except OSError as exc:
                raise FTPError(f"Read error on data connection: {exc}") from exc
        self._emit("File download completed successfully.\n")

    def _upload(self, conn: socket.socket, filename: str) -> None:
        try:
            source = open(filename, "rb")
        except OSError as exc:
            raise FTPError(f"Failed to open local file for reading: {exc}") from exc
        with source:
            try:
                conn.sendfile(source)
            except OSError as exc:
                raise FTPError(f"Failed to send file data: {exc}") from exc
        self._emit("File upload completed successfully.\n")

    def _list(self, conn: socket.socket) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")("replace")
        try:
            while chunk := conn.recv(BUFFER_SIZE - 1):
                self._emit(decoder.decode(chunk))
        except OSError as exc:
            raise FTPError(f"Read error on data connection: {exc}") from exc
        tail = decoder.decode(b"", final=True)
        if tail:
            self._emit(tail)

    def quit(self) -> str:
        """Send QUIT, close the connection and return the server's reply."""
        try:
            return self._command("QUIT")
        finally:
            self.close()

    def close(self) -> None:
        """Close the control connection."""
        if self._sock is not None:
            try:
                self._sock.close()
            except OSError:
                pass
        self._sock = None
        self._pending = b""


def execute_local_command(command: str) -> str:
    """Run a local ``!`` command and return the text to show for it."""
    if command == "LIST":
        try:
            result = subprocess.run(["ls"], capture_output=True, text=True, check=False)
        except OSError as exc:
            return f"Local listing failed: {exc}\n"
        return result.stdout + result.stderr
    if command.startswith("CWD"):
        try:
            os.chdir(command[4:])
        except OSError as exc:
            return f"Local directory change failed: {exc}\n"
        return ""
    if command == "PWD":
        try:
            return f"Local directory: {os.getcwd()}\n"
        except OSError as exc:
            return f"getcwd() error: {exc}\n"
    return f"Unknown local command: {command}\n"


def run_shell(client: FTPClient, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
    """Read commands from ``stdin`` and run them until QUIT or end of input."""
    stdin = stdin if stdin is not None else sys.stdin
    stdout = stdout if stdout is not None else sys.stdout
    client.echo = stdout.write
    try:
        while True:
            stdout.write("ftp> ")
            stdout.flush()
            line = stdin.readline()
            if not line:
                break
            line = line.rstrip("\n")
            if not line:
                continue
            if line.startswith("!"):
                stdout.write(execute_local_command(line[1:]))
                continue
            words = line.split()
            if not words:
                continue
            cmd = words[0]
            arg = words[1] if len(words) > 1 else ""
            if cmd == "QUIT":
                try:
                    client.quit()
                except FTPError as exc:
                    stdout.write(f"{exc}\n")
                break
            try:
                if cmd in DATA_COMMANDS:
                    client.transfer(cmd, arg)
                else:
                    client.send_command(f"{cmd} {arg}")
                    stdout.write(client.receive_response())
            except FTPError as exc:
                # Replies the server sent have already been echoed.
                if exc.code is None:
                    stdout.write(f"{exc}\n")
    finally:
        client.close()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Connect to an FTP server.")
    parser.add_argument("server_address", help="IPv4 address of the server")
    parser.add_argument("--port", type=int, default=SERVER_PORT, help="control port")
    args = parser.parse_args(argv)

    client = FTPClient(args.server_address, args.port)
    client.echo = sys.stdout.write
    try:
        client.connect()
    except FTPError as exc:
        print(exc, file=sys.stderr)
        print("Failed to connect to the server.")
        return 1

    try:
        username = input("Username: ")
        answer = input("Password: ")
        client.login(username, answer)
    except (EOFError, FTPError):
        client.close()
        print("Login failed.")
        return 1

    run_shell(client, sys.stdin, sys.stdout)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())