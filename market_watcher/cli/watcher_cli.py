"""
Command-line entry points for running the watcher and inspecting its state.
"""

import asyncio
from typing import Annotated, Optional

import typer

from market_watcher.broker.alpha_vantage_client import AlphaVantageClient
from market_watcher.core.exceptions import MarketDataError
from market_watcher.database.recipient_repo import RecipientRepository
from market_watcher.live.market_data_job import MarketDataJob
from market_watcher.utils.config_loader import AppConfig, ConfigLoader
from market_watcher.utils.logger import LOGGER as logger
from market_watcher.utils.logger import LoggerSetup

app = typer.Typer(
    name="market-watcher",
    help="Daily SMA/RSI market updates broadcast to Telegram subscribers.",
)

ConfigOption = Annotated[
    Optional[str], typer.Option("--config", "-c", help="Path to config.yaml (default: config/config.yaml).")
]


# --- Helper Functions --- #
def load_config(config_path: Optional[str]) -> AppConfig:
    """Load configuration or exit with a readable error."""
    try:
        config = ConfigLoader(config_path).get_config()
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}")
        raise typer.Exit(code=1) from e
    LoggerSetup.setup_logger(config.logging)
    return config


async def _preview(config: AppConfig, symbol: str) -> str:
    provider = AlphaVantageClient(config.market_data, config.secrets.alpha_vantage_api_key)
    try:
        job = MarketDataJob(provider, None, config.market_data, config.indicators)
        update = await job.build_update(symbol)
        return update.message
    finally:
        await provider.close()


# --- CLI Commands --- #


@app.command()
def run(config: ConfigOption = None) -> None:
    """Start the watcher: poll on schedule and serve chat commands until interrupted."""
    from main import main_async

    try:
        asyncio.run(main_async(config))
    except KeyboardInterrupt:
        logger.info("System interrupted by user. Shutting down.")
    except RuntimeError as e:
        print(f"Error: {e}")
        raise typer.Exit(code=1) from e
    finally:
        logger.complete()


@app.command()
def preview(
    symbol: Annotated[str, typer.Argument(help="Ticker to evaluate, e.g. VOO.")],
    config: ConfigOption = None,
) -> None:
    """Fetch one symbol and print the update that would be broadcast. Nothing is sent."""
    app_config = load_config(config)
    try:
        message = asyncio.run(_preview(app_config, symbol.strip().upper()))
    except MarketDataError as e:
        print(f"Error: {type(e).__name__}: {e}")
        raise typer.Exit(code=1) from e
    print(message)


@app.command()
def subscribers(config: ConfigOption = None) -> None:
    """List the persisted subscriber chat ids."""
    app_config = load_config(config)
    repo = RecipientRepository(app_config.persistence.path)
    try:
        recipients = asyncio.run(repo.load_recipients())
    except RuntimeError as e:
        print(f"Error: {e}")
        raise typer.Exit(code=1) from e

    if not recipients:
        print("No persisted subscribers.")
        return
    for recipient_id in recipients:
        print(recipient_id)
    print(f"{len(recipients)} subscriber(s) in {repo.path}")


if __name__ == "__main__":
    app()
