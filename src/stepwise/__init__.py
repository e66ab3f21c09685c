# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Stepwise - a resumable workflow execution engine.

Stepwise runs declarative, ordered lists of typed steps against a variable
context, persists progress after every step, and can suspend indefinitely
waiting for human input before resuming exactly where it left off.

Example:
    Run a workflow from the command line::

        $ stepwise run create-prd.workflow.yaml --instance-id prd-1

    Or use the library programmatically::

        from stepwise.config.loader import load_definition
        from stepwise.engine.executor import StepExecutor
        from stepwise.engine.store import FileStateStore
        from stepwise.handlers.registry import create_default_registry

        definition = load_definition("create-prd.workflow.yaml")
        executor = StepExecutor(FileStateStore(".stepwise"), create_default_registry())
        executor.initialize(definition, "prd-1")
        result = await executor.execute_next_step()

Modules:
    config: Definition schema, YAML loading, definition sources and settings.
    engine: Execution state, stores, step executor, hierarchy and worker.
    handlers: Action handler registry and built-in handlers.
    cli: Command-line interface commands.
    exceptions: Custom exception hierarchy.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
