# tierfs

tierfs treats several directories ("tiers") as one storage space. It keeps the
most popular files in the first tiers listed. A file's popularity is an
exponential moving average of its accesses, measured in accesses per hour.

Each tiering pass does the following:

1. It walks every tier and records each regular file. Symlinks are skipped, and
   so are the temporary `.NAME.autotier.hide` files that are written while a
   file is moved.
2. It updates each file's popularity.
3. It sorts the files by descending popularity. Ties go to the file accessed
   most recently.
4. It places each file in the first tier whose quota still has room for it.

Files that have to change tier are copied in chunks of `Copy Buffer Size`. The
copy keeps ownership, permission bits, and access and modification times. The
original is then removed. Pinned files are counted in their tier's usage but
are never moved by a pass.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Configuration

The configuration file has a `[Global]` (or `[global]`) section and one section
per tier. The first tier listed is filled first. If there is no global section,
the keys are read from the top of the file instead. If the file does not exist,
a commented template is written in its place.

```
[Global]
Log Level = 1                  # 0 = none, 1 = normal, 2 = debug
Tier Period = 1000             # seconds between tiering passes
Copy Buffer Size = 1 MiB
Strict Period = false
Crawler Threads = 8
Run Path = /var/lib/autotier

[Tier 1]
Path = /mnt/fast
Quota = 90 %

[Tier 2]
Path = /mnt/slow
Quota = 100 %
```

Global keys:

* `Log Level`: 0, 1 or 2. Values outside this range are clamped.
* `Tier Period`: seconds between passes. The default is -1. A negative value
  turns periodic passes off, and then passes only run when requested.
* `Strict Period`: when `false` (the default), pinning files queues an
  immediate tiering pass. When `true`, it does not.
* `Copy Buffer Size`: a size such as `1 MiB` or `512 KB`. The default is 1 MiB.
* `Crawler Threads`: stored and shown by `config`. Values of 0 or less fall
  back to 8. The crawl itself runs in one thread.
* `Run Path`: base directory for runtime files. The default is
  `/var/lib/autotier`. The files go in a subdirectory named after a hash of the
  configuration file path. That subdirectory holds:
  * `metadata.db`, a SQLite metadata store;
  * `autotier.lock`;
  * `adhoc.socket`, the control socket;
  * `conflicts.log`.

Tier keys:

* `Path`: the tier's directory.
* `Quota`: either a percentage of the tier's filesystem capacity, or an
  absolute size (`B`, `KB`/`KiB` through `YB`/`YiB`, case-insensitive). The
  default is 100 %.

Loading fails with `tierfs.config.ConfigError` in these cases:

* a tier has no path;
* fewer than two tiers are defined;
* the run path cannot be created or is not readable and writable.

When a file being moved already exists at its destination, it is stored as
`NAME.autotier_conflict.<origin tier>` and the path is recorded in the conflict
log. `status` reports it until it is resolved.

## Control command

`tierctl` sends a command over the Unix socket to a running engine and prints
the reply:

```
tierctl status                          # table of tiers, quotas and usage
tierctl -j status                       # the same as JSON
tierctl config                          # dump the loaded configuration
tierctl oneshot                         # queue an immediate tiering pass
tierctl pin "Tier 1" FILE [FILE ...]    # pin files to a tier and move them there
tierctl unpin FILE [FILE ...]           # clear the pin
tierctl list-pins                       # pinned files and their tier paths
tierctl list-popularity                 # every file with its popularity
tierctl which-tier FILE [FILE ...]      # tier and backend path of each file
tierctl help
```

Options:

* `-c, --config PATH`: the configuration file. The default is
  `/etc/autotier.conf`.
* `-j, --json`: JSON output for `status`.
* `-v, --verbose`: debug output.
* `-q, --quiet`: no output except errors.
* `-V, --version`: print the version.
* `-h, --help`: show usage.

File arguments must exist locally. They are made absolute before they are sent.
The engine refuses these pin or unpin requests:

* paths outside its mount point;
* files recorded as open in `tierfs.openfiles`.

The exit status is 0 on an `OK` reply and 1 otherwise.

## Library use

```python
import threading
from tierfs.config import ConfigOverrides
from tierfs.tiering import TierEngine

engine = TierEngine("/etc/autotier.conf", ConfigOverrides())
engine.set_mount_point("/mnt/tiered")
threading.Thread(target=engine.process_adhoc_requests, daemon=True).start()
try:
    engine.begin(daemon_mode=True)   # runs until engine.stop()
finally:
    engine.shutdown()
```

`TierEngine` provides:

* `tier()`: runs one pass. It returns `False` if a pass is already running.
* `handle_request(payload)`: answers a request without going through the
  socket.
* `pin_files` and `unpin_files`: the actions that queued pin and unpin
  requests perform.

Access counts feed the popularity calculation. They only grow when
`tierfs.metadata.Metadata.touch()` is called and the record is stored with
`update()`.

## What it does not do

tierfs does not mount a filesystem. There is no FUSE layer that merges the
tiers under a mount point. Because of that, nothing counts file accesses or
registers open files on its own. A caller has to use `Metadata.touch()` and
`tierfs.openfiles.register_open_file()` for that. The only command is `tierctl`.
The engine runs when a program builds a `TierEngine` as shown above.