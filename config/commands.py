"""
Command templates for the version control backends

Templates are whitespace separated command strings in the runner's
``KEY=VAL ... binary arg ...`` shape, formatted with str.format.
"""

# Consolidated commands dictionary - all commands accessible via COMMANDS["group"]["key"]
COMMANDS = {
    # Perforce commands; {env} expands to the P4PORT/P4USER/P4CLIENT triple
    "P4_COMMANDS": {
        "env": "P4PORT={P4PORT} P4USER={P4USER} P4CLIENT={P4CLIENT}",
        "version": "{p4_bin} -V",
        "force_sync": "{env} {p4_bin} sync -f",
        "sync": "{env} {p4_bin} sync",
        "print": "{env} {p4_bin} print -q {file_spec}",
    },
    # Git commands
    "GIT_COMMANDS": {
        "version": "{git_bin} --version",
        "clone": "{git_bin} clone {url} {base_dir}",
        "clone_branch": "{git_bin} clone {url} -b {branch} {base_dir}",
        "branch": "{git_bin} -C {base_dir} branch",
        "fetch": "{git_bin} -C {base_dir} fetch --all",
        "reset_hard": "{git_bin} -C {base_dir} reset --hard origin/{branch}",
        "show": "{git_bin} -C {base_dir} show {revision}:{path}",
        "cat_file_size": "{git_bin} -C {base_dir} cat-file -s {revision}:{path}",
        "blame": "{git_bin} -C {base_dir} blame -L {start_line},{end_line} {revision} -- {path}",
        "log_commit": "{git_bin} -C {base_dir} log -1 --pretty=format:%H%n%an%n%ae%n%aI%n%s {revision} -- {path}",
    },
}

# Persisted Perforce identity file, relative to the project base directory
P4_CONFIG_DIR = ".p4"
P4_CONFIG_FILE = "config"
P4_CONFIG_TEMPLATE = "P4PORT={P4PORT}\nP4USER={P4USER}\nP4CLIENT={P4CLIENT}\n"


def format_command(group: str, key: str, **kwargs) -> str:
    """Look up a command template and fill in its placeholders"""
    if group not in COMMANDS:
        raise ValueError(f"Unknown command group: {group}")
    templates = COMMANDS[group]
    if key not in templates:
        raise ValueError(f"Unknown command '{key}' for group '{group}'")
    return templates[key].format(**kwargs)
