import json

import click

from geostream.geostream_daemon import GeoStreamDaemon
from geostream.location.fix import ProviderId
from geostream.settings import ConfigManager, GeoStreamSettings


@click.command()
@click.option("--log-level", default=None, help="Set logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)")
@click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False),
    default=None,
    help="Configuration file (default: config.json in the user config directory)",
)
@click.option(
    "--provider",
    "providers",
    multiple=True,
    type=click.Choice([p.value for p in ProviderId]),
    help="Provider to subscribe to (repeatable, default: satellite and network)",
)
@click.option("--interval-ms", type=int, default=None, help="Polling interval in milliseconds (default: 5000)")
@click.option(
    "--min-distance-m", type=float, default=None, help="Minimum movement in meters between fixes (default: 0)"
)
@click.option("--save-config", is_flag=True, default=False, help="Write the effective configuration and exit")
def cli(log_level, config_file, providers, interval_ms, min_distance_m, save_config):
    overrides = {}
    if log_level:
        overrides["log_level"] = log_level
    if providers or interval_ms is not None or min_distance_m is not None:
        entries = []
        for name in providers or [p.value for p in ProviderId]:
            entry = {"provider": name}
            if interval_ms is not None:
                entry["interval_ms"] = interval_ms
            if min_distance_m is not None:
                entry["min_distance_m"] = min_distance_m
            entries.append(entry)
        overrides["providers"] = entries

    settings = GeoStreamSettings(config_file=config_file, **overrides)

    if save_config:
        config_manager = ConfigManager(config_file)
        config_manager.save_config(json.loads(settings.model_dump_json()))
        click.echo(f"Configuration written to {config_manager.get_config_path()}")
        return

    daemon = GeoStreamDaemon(settings)
    daemon.run()


if __name__ == "__main__":
    cli()
