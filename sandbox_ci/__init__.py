# sandbox_ci package

"""
Run a project's validation phases inside a disposable container.

Modules include:
    - cli: command-line entry point
    - controller: the run lifecycle (provision, bootstrap, inject, phases, teardown)
    - sandbox: container runtime and remote command execution
    - provision: sandbox creation, network readiness, proxy and user setup
    - installer: bootstrap package installation with bounded retries
    - snapshot: read-only view of the host git working tree
    - injector: transplanting the working tree into a sandbox
    - phases: the phase catalog and runner
    - artifacts: copying build outputs back to the host
    - config: defaults and TOML project configuration
    - retry: bounded retry loop
    - log: console reporting and JSONL run log
"""

__version__ = "0.1.0"
