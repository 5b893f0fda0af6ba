# colima

A Python library for managing the configuration and helper processes of
Lima virtual machines that run Docker or containerd, optionally with
Kubernetes (k3s). It keeps per-profile configuration under `~/.colima`
(or `$COLIMA_HOME`, or `$XDG_CONFIG_HOME/colima`).

## Requirements

- Python 3.10 or later
- Lima (`limactl`) v0.18.0 or newer on your `PATH`, for the version check
  and anything that talks to a VM

## Installation

```sh
pip install .
```

Install the test dependencies with `pip install .[test]`.

## Modules

- `colima.config` – the `Config` dataclass and its parts (`Mount`,
  `Network`, `Kubernetes`, `Provision`), conversion to and from the YAML
  file format with `Config.to_dict()` / `Config.from_dict()`, the directory
  layout (`config_base_dir()`, `cache_dir()`, `templates_dir()`,
  `lima_dir()`, `ssh_config_file()`) and profiles (`profile_from_name()`,
  `set_profile()`, `current_profile()`).
- `colima.configmanager` – `load()`, `load_from()`, `load_instance()`,
  `save()`, `save_to_file()`, `save_from_file()`, `validate_config()` and
  `teardown()`; failures raise `ConfigError`.
- `colima.startconfig` – merges start options (`StartOptions`) with the
  saved configuration or a template: `prepare_config()`,
  `mounts_from_flag()`, `dns_hosts_from_flag()`, `set_flag_defaults()`,
  `set_config_defaults()` and `set_fixed_configs()`.
- `colima.core` – `lima_version_supported()` runs `limactl info` and
  checks the version; `check_lima_version()` checks a version string.
  Both raise `LimaVersionError`.
- `colima.command` – `command()`, `command_interactive()` (returning a
  `Command` with `run()` and `output()`), `prompt()` for yes/no questions
  and `quoted_args()`.
- `colima.chain` – `CommandChain` / `ActiveCommandChain`: ordered steps
  with named stages, retries and `NonFatalError` for warnings.
- `colima.process` – the `Process` and `Dependency` interfaces,
  `LocalHost` for running host commands, and `dependencies()`.
- `colima.vmnet` – `VmnetProcess` and its dependencies (`SudoersFile`,
  `VmnetBinaries`, `RunDir`). The sudoers text and vmnet archives are read
  from an `assets_dir` (`network/sudo.txt`,
  `network/vmnet_<arch>.tar.gz`); the package does not ship these files.
- `colima.inotify` – `InotifyProcess`, which watches mounted container
  volumes with watchdog and replays file modes inside the VM through a
  `GuestActions` implementation you supply; `omit_children_directories()`
  and `EventFilter` are usable on their own.
- `colima.daemon` – `ProcessManager`, which starts, stops and inspects a
  background daemon by running `<executable> daemon start|stop|status
  <profile>`, and `processes_from_config()`.
- `colima.editor` – `resolve_editor()`, `launch_editor()`,
  `wait_for_user_edit()`, `template_file()` and
  `template_file_or_default()`.
- `colima.nerdctl` – `nerdctl_script()` and `install_nerdctl()` for a
  host-side nerdctl wrapper script.

## Example

```python
from colima.config import profile_from_name
from colima.startconfig import mounts_from_flag

profile = profile_from_name("dev")
print(profile.id, profile.display_name)  # colima-dev colima [profile=dev]
print(mounts_from_flag(["~/projects:w", "/data:/mnt/data"]))
```

Mounts use the form `location[:mountPoint][:w]`, where `:w` makes the
mount writable; DNS hosts use `name=address`.

## What this package does not do

- It installs no command-line program. There is no `colima` command, and
  nothing here parses command-line flags; callers build `StartOptions`
  and the set of changed option names themselves.
- It does not provide the `daemon start|stop|status` command that
  `ProcessManager` runs; the executable given to it must supply that.
- It does not create, start, stop or delete virtual machines, and it does
  not provision container runtimes or Kubernetes inside them.