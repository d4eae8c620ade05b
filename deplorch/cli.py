"""
CLI interface for deplorch.

Commands:
- deploy: run the configured topology against the JSON-RPC backend
- plan: print deployment order and patch list (no backend calls)
- simulate: full run against the in-memory backend, nothing committed
- recommit: retry only the commit step of a run whose commit failed
- show: print the committed manifest
- init: write a default configuration
"""

import json
import signal
import threading

import click

from deplorch import __version__
from deplorch.errors import (
    DeplorchError,
    DeploymentError,
    PartialManifestError,
    SinkWriteError,
)


@click.group()
@click.version_option(version=__version__, prog_name="deplorch")
@click.pass_context
def main(ctx):
    """
    deplorch - Dependency-ordered deployment orchestrator.

    Deploys a topology of interdependent components, resolving circular
    references by placeholder-then-patch, and commits an address manifest.
    """
    from deplorch.config import load_config

    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = load_config()
    except (FileNotFoundError, DeplorchError) as e:
        # init runs without a config; other commands check config_error
        ctx.obj["config_error"] = str(e)


def _require_config(ctx):
    config = ctx.obj.get("config")
    if config is None:
        click.echo(f"✗ Config not loaded: {ctx.obj.get('config_error', 'Unknown error')}", err=True)
        click.echo("Run 'deplorch init' to create a configuration file.", err=True)
        raise SystemExit(1)

    from deplorch.utils import setup_logging

    setup_logging(config.log_level, config.log_format, config.log_path)
    return config


def _load_topology(config):
    from deplorch.topology import load_topology

    try:
        return load_topology(config.topology_file)
    except DeplorchError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)


def _echo_progress(state: dict):
    def on_event(event: str, data: dict) -> None:
        state["run_id"] = data.get("run_id", state.get("run_id"))
        if event == "planned":
            plan = data["plan"]
            click.echo(f"Deploying {plan.topology}: {' -> '.join(plan.names)}")
        elif event == "deployed":
            line = f"✓ {data['component']} deployed at {data['address']}"
            if data["placeholders"]:
                line += f" (placeholder for {', '.join(data['placeholders'])})"
            click.echo(line)
        elif event == "patched":
            action = data["action"]
            click.echo(
                f"✓ {action.component}.{action.method}({action.dependency}) "
                f"-> {action.argument_addresses[0]}"
            )
        elif event == "committed":
            click.echo(f"✓ Manifest committed (run {data['run_id']})")

    return on_event


def _echo_failure(error: Exception, run_id=None) -> None:
    click.echo(f"✗ {error}", err=True)
    if run_id:
        click.echo(f"  run: {run_id}", err=True)

    if isinstance(error, DeploymentError):
        if error.cause is not None:
            click.echo(f"  cause: {type(error.cause).__name__}: {error.cause}", err=True)
        if error.deployed:
            click.echo("  deployed before failure:", err=True)
            for name, component in error.deployed.items():
                click.echo(f"    {name}: {component.address}", err=True)
        else:
            click.echo("  nothing was deployed", err=True)
            if error.retryable:
                click.echo("  the failure was transient; the run can be retried", err=True)
    if isinstance(error, PartialManifestError) and error.pending_patches:
        click.echo("  patches not applied:", err=True)
        for edge in error.pending_patches:
            click.echo(f"    {edge.step_id}", err=True)
    if isinstance(error, SinkWriteError) and run_id:
        click.echo(f"  retry the commit with: deplorch recommit {run_id}", err=True)


def _build_live_sequencer(config, on_event=None):
    from deplorch.artifacts import FileArtifactResolver
    from deplorch.backends import JsonRpcBackend
    from deplorch.executor import DeploymentExecutor
    from deplorch.manifest import FileManifestSink, ManifestWriter
    from deplorch.run_store import FileRunStore
    from deplorch.sequencer import Sequencer

    backend = JsonRpcBackend(
        config.rpc_url,
        timeout_s=config.request_timeout_s,
        max_attempts=config.max_attempts,
    )
    executor = DeploymentExecutor(
        backend,
        confirmations=config.confirmations,
        timeout_s=config.confirmation_timeout_s,
        poll_interval_s=config.poll_interval_s,
    )
    return Sequencer(
        FileArtifactResolver(config.artifacts_dir),
        executor,
        ManifestWriter(FileManifestSink(config.manifest_file)),
        store=FileRunStore(config.run_store_dir),
        on_event=on_event,
    )


def _export(config, manifest) -> None:
    from deplorch.manifest import export_interfaces

    if config.interfaces_path is None:
        return
    try:
        paths = export_interfaces(manifest, config.interfaces_path)
    except OSError as e:
        click.echo(f"✗ Manifest committed, but exporting interfaces failed: {e}", err=True)
        raise SystemExit(1)
    click.echo(f"✓ Exported {len(paths)} interfaces to {config.interfaces_path}")


@main.command("deploy")
@click.pass_context
def deploy(ctx):
    """Deploy the configured topology and commit the manifest."""
    config = _require_config(ctx)
    topology = _load_topology(config)

    state: dict = {}
    sequencer = _build_live_sequencer(config, on_event=_echo_progress(state))

    cancel = threading.Event()

    def _on_sigterm(signum, frame):
        click.echo("Cancelling after the current step...", err=True)
        cancel.set()

    previous = signal.signal(signal.SIGTERM, _on_sigterm)
    try:
        manifest = sequencer.run(topology, cancel=cancel)
    except DeplorchError as e:
        _echo_failure(e, state.get("run_id"))
        raise SystemExit(1)
    finally:
        signal.signal(signal.SIGTERM, previous)

    _export(config, manifest)
    click.echo(f"✓ {len(manifest.components)} components recorded in {config.manifest_file}")


@main.command("plan")
@click.pass_context
def plan(ctx):
    """Print the deployment order and patch list."""
    config = _require_config(ctx)
    topology = _load_topology(config)

    try:
        deployment_plan = topology.plan()
    except DeplorchError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    click.echo(f"Topology: {topology.name} (version {topology.version})")
    click.echo(f"Plan: {deployment_plan.plan_id}")
    click.echo()
    click.echo("Order:")
    for position, spec in enumerate(deployment_plan.order, start=1):
        args = [
            f"{dep} (placeholder)" if dep in spec.deferred_targets else dep
            for dep in spec.dependencies
        ]
        suffix = f" <- {', '.join(args)}" if args else ""
        click.echo(f"  {position}. {spec.name}{suffix}")

    click.echo("Patches:")
    if not deployment_plan.patches:
        click.echo("  (none)")
    for edge in deployment_plan.patches:
        click.echo(f"  {edge.source}.{edge.method}({edge.target})")

    click.echo("Aliases:")
    for alias, name in sorted(deployment_plan.aliases.items()):
        click.echo(f"  {alias} -> {name}")


@main.command("simulate")
@click.pass_context
def simulate(ctx):
    """Run the topology against an in-memory backend and print the manifest."""
    from deplorch.artifacts import FileArtifactResolver, InMemoryArtifactResolver
    from deplorch.backends import InMemoryBackend
    from deplorch.executor import DeploymentExecutor
    from deplorch.manifest import InMemoryManifestSink, ManifestWriter
    from deplorch.sequencer import Sequencer

    config = _require_config(ctx)
    topology = _load_topology(config)

    if config.artifacts_dir.exists():
        resolver = FileArtifactResolver(config.artifacts_dir)
    else:
        click.echo(f"No artifacts at {config.artifacts_dir}; using stub bytecode")
        resolver = InMemoryArtifactResolver.stub([spec.name for spec in topology.components])

    executor = DeploymentExecutor(
        InMemoryBackend(),
        confirmations=config.confirmations,
        poll_interval_s=0,
        sleep=lambda _: None,
    )
    state: dict = {}
    sequencer = Sequencer(
        resolver,
        executor,
        ManifestWriter(InMemoryManifestSink()),
        on_event=_echo_progress(state),
    )
    try:
        manifest = sequencer.run(topology)
    except DeplorchError as e:
        _echo_failure(e, state.get("run_id"))
        raise SystemExit(1)

    click.echo()
    click.echo(json.dumps(manifest.to_dict(), indent=2))


@main.command("recommit")
@click.argument("run_id")
@click.pass_context
def recommit(ctx, run_id: str):
    """Retry only the manifest commit of a previous run."""
    config = _require_config(ctx)
    sequencer = _build_live_sequencer(config)

    try:
        manifest = sequencer.recommit(run_id)
    except DeplorchError as e:
        _echo_failure(e, run_id)
        raise SystemExit(1)

    click.echo(f"✓ Manifest for run {run_id} committed to {config.manifest_file}")
    _export(config, manifest)


@main.command("show")
@click.pass_context
def show(ctx):
    """Show the committed manifest."""
    from deplorch.manifest import FileManifestSink, ManifestWriter

    config = _require_config(ctx)
    try:
        manifest = ManifestWriter(FileManifestSink(config.manifest_file)).read()
    except (ValueError, KeyError) as e:
        click.echo(f"✗ Unreadable manifest {config.manifest_file}: {e}", err=True)
        raise SystemExit(1)

    if manifest is None:
        click.echo(f"No manifest at {config.manifest_file}. Run 'deplorch deploy'.", err=True)
        raise SystemExit(1)

    click.echo(f"Topology: {manifest.topology}")
    click.echo(f"Run: {manifest.run_id}")
    click.echo(f"Deployer: {manifest.deployer}")
    click.echo(f"Committed: {manifest.committed_at}")
    click.echo()
    for name, component in manifest.components.items():
        click.echo(f"{name}: {component.address}")
        for dep, address in component.links.items():
            click.echo(f"  {dep} -> {address}")
    click.echo()
    for alias, address in sorted(manifest.aliases.items()):
        click.echo(f"{alias}={address}")


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
@click.option("--topology", "topology_name", default="mosh", show_default=True,
              help="Bundled topology to start from")
def init(force: bool, topology_name: str):
    """Initialize deplorch configuration and a starter topology."""
    import shutil

    from deplorch.config import default_config_dict, get_deplorch_home
    from deplorch.topology import bundled_topology
    import yaml

    try:
        source = bundled_topology(topology_name)
    except DeplorchError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    home = get_deplorch_home()
    if not home.exists():
        home.mkdir(parents=True)

    cfg_path = home / "config.yaml"
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    cfg_path.write_text(yaml.safe_dump(default_config_dict(home), sort_keys=False))

    env_path = home / ".env"
    if not env_path.exists():
        env_path.write_text("# DEPLORCH_RPC_URL=http://127.0.0.1:8545\n")

    topology_path = home / "topology.yaml"
    if not topology_path.exists():
        shutil.copyfile(source, topology_path)
        click.echo(f"✓ Copied bundled topology '{topology_name}' to {topology_path}")

    click.echo(f"Initialized deplorch config at {cfg_path}")


if __name__ == "__main__":
    main()
