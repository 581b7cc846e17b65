import os
import socket
import threading

import pytest

from miniftp.protocol import format_port_argument
from miniftp.server import ClientSession, FTPServer, authenticate

USERS_TEXT = "alice password\nbob secret\n"


@pytest.fixture
def users_file(tmp_path):
    path = tmp_path / "users.txt"
    path.write_text(USERS_TEXT)
    return path


@pytest.fixture
def server(tmp_path, users_file):
    srv = FTPServer(root=tmp_path, users_file=users_file, host="127.0.0.1", port=0, max_clients=1)
    srv.data_connect_delay = 0
    yield srv
    srv.shutdown()


@pytest.fixture
def pair(tmp_path):
    server_side, client_side = socket.socketpair()
    client_side.settimeout(5)
    session = ClientSession(sock=server_side, cwd=str(tmp_path))
    reader = client_side.makefile("rb")
    yield session, reader
    reader.close()
    client_side.close()
    server_side.close()


def reply(reader):
    return reader.readline().decode()


def login(server, session, reader):
    server.process_command(session, "USER alice\r\n")
    reply(reader)
    password = "password"
    server.process_command(session, f"PASS {password}\r\n")
    return reply(reader)


def test_authenticate_accepts_known_pair(users_file):
    assert authenticate(users_file, "bob", "secret") is True


def test_authenticate_rejects_wrong_password(users_file):
    assert authenticate(users_file, "alice", "secret") is False


def test_authenticate_missing_file(tmp_path):
    assert authenticate(tmp_path / "absent.txt", "alice", "password") is False


def test_authenticate_pairs_span_lines(tmp_path):
    path = tmp_path / "users.txt"
    path.write_text("alice password bob\nsecret\n")
    assert authenticate(path, "bob", "secret") is True


def test_user_reply(server, pair):
    session, reader = pair
    server.process_command(session, "USER alice\r\n")
    assert reply(reader) == "331 Username OK, need password.\r\n"
    assert session.username == "alice"


def test_login_creates_user_directory(server, pair, tmp_path):
    session, reader = pair
    assert login(server, session, reader) == "230 User logged in, proceed.\r\n"
    assert session.authenticated
    assert (tmp_path / "alice").is_dir()
    assert session.cwd == os.path.realpath(tmp_path / "alice")


def test_login_wrong_password(server, pair):
    session, reader = pair
    server.process_command(session, "USER alice\r\n")
    reply(reader)
    server.process_command(session, "PASS secret\r\n")
    assert reply(reader) == "530 Not logged in.\r\n"
    assert not session.authenticated


@pytest.mark.parametrize("line", ["PWD", "CWD x", "PORT 127,0,0,1,4,0", "LIST", "NOOP"])
def test_commands_need_login(server, pair, line):
    session, reader = pair
    server.process_command(session, line)
    assert reply(reader) == "530 Not logged in.\r\n"


def test_pwd(server, pair):
    session, reader = pair
    login(server, session, reader)
    server.process_command(session, "PWD\r\n")
    assert reply(reader) == f'257 "{session.cwd}"\r\n'


def test_cwd_into_subdirectory(server, pair, tmp_path):
    session, reader = pair
    login(server, session, reader)
    (tmp_path / "alice" / "docs").mkdir()
    server.process_command(session, "cwd docs\r\n")
    expected = os.path.realpath(tmp_path / "alice" / "docs")
    assert reply(reader) == f"200 directory changed to {expected}\r\n"
    assert session.cwd == expected


def test_cwd_missing_directory(server, pair):
    session, reader = pair
    login(server, session, reader)
    before = session.cwd
    server.process_command(session, "CWD nowhere\r\n")
    assert reply(reader) == "550 No such file or directory.\r\n"
    assert session.cwd == before


def test_port_sets_data_address(server, pair):
    session, reader = pair
    login(server, session, reader)
    server.process_command(session, "PORT 127,0,0,1,4,0\r\n")
    assert reply(reader) == "200 PORT command successful.\r\n"
    assert (session.client_ip, session.client_data_port) == ("127.0.0.1", 1024)


def test_port_malformed(server, pair):
    session, reader = pair
    login(server, session, reader)
    server.process_command(session, "PORT 1,2,3\r\n")
    assert reply(reader).startswith("501")


def test_unknown_command(server, pair):
    session, reader = pair
    login(server, session, reader)
    server.process_command(session, "NOOP\r\n")
    assert reply(reader) == "202 Command not implemented.\r\n"


@pytest.fixture
def data_listener():
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen(1)
    listener.settimeout(5)
    yield listener
    listener.close()


def prepare_transfer(server, session, reader, listener):
    login(server, session, reader)
    port = listener.getsockname()[1]
    server.process_command(session, f"PORT {format_port_argument('127.0.0.1', port)}\r\n")
    return reply(reader)


def read_all(conn):
    chunks = []
    while chunk := conn.recv(1024):
        chunks.append(chunk)
    return b"".join(chunks)


def test_retr_sends_file(server, pair, data_listener, tmp_path):
    session, reader = pair
    assert prepare_transfer(server, session, reader, data_listener).startswith("200")
    content = bytes(range(256)) * 10
    (tmp_path / "alice" / "blob.bin").write_bytes(content)
    server.process_command(session, "RETR blob.bin\r\n")
    conn, _ = data_listener.accept()
    with conn:
        conn.settimeout(5)
        assert read_all(conn) == content
    assert reply(reader) == "150 Opening data connection.\r\n"
    assert reply(reader) == "226 Transfer complete.\r\n"


def test_retr_missing_file(server, pair, data_listener):
    session, reader = pair
    prepare_transfer(server, session, reader, data_listener)
    server.process_command(session, "RETR missing.txt\r\n")
    conn, _ = data_listener.accept()
    conn.close()
    assert reply(reader) == "150 Opening data connection.\r\n"
    assert reply(reader) == "550 File not found.\r\n"


def test_stor_writes_file(server, pair, data_listener, tmp_path):
    session, reader = pair
    prepare_transfer(server, session, reader, data_listener)
    content = b"uploaded data\n" * 200
    server.process_command(session, "STOR upload.txt\r\n")
    conn, _ = data_listener.accept()
    conn.sendall(content)
    conn.close()
    assert reply(reader) == "150 Opening data connection.\r\n"
    assert reply(reader) == "226 Transfer complete.\r\n"
    assert (tmp_path / "alice" / "upload.txt").read_bytes() == content


def test_list_names_regular_files(server, pair, data_listener, tmp_path):
    session, reader = pair
    prepare_transfer(server, session, reader, data_listener)
    home = tmp_path / "alice"
    (home / "a.txt").write_text("a")
    (home / "b.txt").write_text("b")
    (home / "sub").mkdir()
    server.process_command(session, "LIST\r\n")
    conn, _ = data_listener.accept()
    with conn:
        conn.settimeout(5)
        listing = read_all(conn).decode()
    assert sorted(listing.splitlines()) == ["a.txt", "b.txt"]
    assert reply(reader) == "150 Opening data connection.\r\n"
    assert reply(reader) == "226 Transfer complete.\r\n"


def test_transfer_without_data_port(server, pair):
    session, reader = pair
    login(server, session, reader)
    server.process_command(session, "LIST\r\n")
    assert reply(reader) == "425 Can't open data connection.\r\n"


@pytest.fixture
def running(server):
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    thread.join(5)


def test_serve_forever_session(running):
    with socket.create_connection(running.address, timeout=5) as conn:
        reader = conn.makefile("rb")
        assert reply(reader) == "220 Service ready for new user.\r\n"
        conn.sendall(b"USER bob\r\n")
        assert reply(reader) == "331 Username OK, need password.\r\n"
        conn.sendall(b"PASS secret\r\n")
        assert reply(reader) == "230 User logged in, proceed.\r\n"
        conn.sendall(b"QUIT\r\n")
        assert reply(reader) == "221 Service closing control connection.\r\n"
        assert reader.read() == b""
        reader.close()


def test_serve_forever_refuses_extra_client(running):
    with socket.create_connection(running.address, timeout=5) as first:
        reader = first.makefile("rb")
        assert reply(reader).startswith("220")
        with socket.create_connection(running.address, timeout=5) as second:
            assert second.recv(1024) == b""
        reader.close()