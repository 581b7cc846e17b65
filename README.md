# miniftp

A small FTP server and an interactive FTP client, using only the standard
library. Data transfers use active mode: the client listens on a local port,
announces it with `PORT`, and the server connects to it.

## Installing

```
pip install .
```

## Running the server

```
miniftp-server [--host HOST] [--port PORT] [--root DIR] [--users FILE] [--max-clients N]
```

- `--host` is the address to listen on (all addresses by default).
- `--port` is the control port, 21 by default, which may need elevated
  privileges.
- `--root` is the directory holding the user directories (`.` by default).
- `--users` is the users file; by default `users.txt` inside the root.
- `--max-clients` limits simultaneous control connections (10 by default);
  further connections are closed at once.

The users file holds whitespace-separated pairs of user name and password:

```
alice password
```

When a user logs in, the server creates a directory named after that user
under the root and moves the session into it. Progress messages are logged
at INFO level. Stop the server with Ctrl-C.

Commands are matched without regard to case:

| Command        | Reply                                                        |
|----------------|--------------------------------------------------------------|
| `USER <name>`  | `331`                                                        |
| `PASS <pass>`  | `230` on success, `530` otherwise                            |
| `PORT h1,h2,h3,h4,p1,p2` | `200`, or `501` for a malformed argument           |
| `PWD`          | `257 "<directory>"`                                          |
| `CWD <dir>`    | `200 directory changed to ...`, or `550`                     |
| `LIST`         | names of the regular files in the current directory          |
| `RETR <file>`  | sends the file, or `550 File not found.`                     |
| `STOR <file>`  | stores the uploaded file, or `550 Cannot write file.`        |
| `QUIT`         | `221`, then the connection is closed                         |

Data commands wait about one second, connect to the address given by the
last `PORT`, reply `150`, transfer, and finish with `226 Transfer complete.`
If the data connection cannot be opened the reply is `425`. Until a session
has logged in, every command other than `USER` and `PASS` gets
`530 Not logged in.`; unknown commands get `202 Command not implemented.`

## Running the client

```
miniftp-client SERVER_ADDRESS [--port PORT]
```

`SERVER_ADDRESS` must be an IPv4 address. The client asks for a user name and
a password, then shows an `ftp>` prompt. Commands are typed in upper case:

- `LIST` prints the files in the remote directory.
- `RETR <file>` downloads a file into the local directory.
- `STOR <file>` uploads a local file.
- `QUIT` ends the session.
- Any other word is sent to the server as it stands, for example `PWD` or
  `CWD <dir>`, and the reply is printed.

Lines that start with `!` act on the local side: `!LIST` runs `ls`, `!PWD`
prints the local directory and `!CWD <dir>` changes it.

The client binds its data port to the first free port from 1024 upwards.

## Using it from Python

```python
from miniftp.client import FTPClient

password = "password"
with FTPClient("127.0.0.1", 2121) as client:
    client.echo = print
    client.connect()
    client.login("alice", password)
    client.transfer("LIST")
    client.transfer("RETR", "notes.txt")
    client.quit()
```

`FTPClient` raises `miniftp.protocol.FTPError` when a reply is not the one
expected; its `code` attribute holds the reply code when there was one. Set
`echo` to a callable to receive every reply and the text of listings.
`send_command()` and `receive_response()` give direct access to the control
connection, and `miniftp.client.run_shell(client, stdin, stdout)` runs the
interactive prompt over any text streams.

```python
from miniftp.server import FTPServer

server = FTPServer(root="ftproot", users_file="ftproot/users.txt",
                   host="127.0.0.1", port=2121, max_clients=10)
print(server.address)
server.serve_forever()   # until server.shutdown() is called from another thread
```

`miniftp.server.authenticate(users_file, username, password)` checks a pair
against a users file. `miniftp.protocol` holds the helpers both sides use:
`split_command`, `reply_code`, `parse_port_argument` and
`format_port_argument`.

## What it does not do

- Only active mode over IPv4; there is no `PASV`, `EPRT` or `EPSV`.
- No commands for deleting, renaming or making directories.
- Passwords are stored and sent as plain text, with no TLS.
- `CWD` is not confined to the served root.
- Replies are single lines; multi-line replies are not supported.