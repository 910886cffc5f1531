"""
Batch entry point: reads the submissions CSV named by DATA_FILE, evaluates
every row and writes the report to OUTPUT_FILE.
"""
import asyncio
import logging
import sys
import time

from dotenv import load_dotenv

from lptrace.config import Settings, load_settings
from lptrace.core.errors import ConfigurationError
from lptrace.core.services import SubmissionPipeline
from lptrace.core.use_cases.input_validation import build_submissions
from lptrace.infrastructure.cache.redis_service import RedisService
from lptrace.infrastructure.csv_io import read_rows, write_rows
from lptrace.infrastructure.gateways.defillama_prices import DefiLlamaPriceOracle
from lptrace.infrastructure.gateways.jupiter_tokens import JupiterTokenList
from lptrace.infrastructure.gateways.meteora_api import MeteoraDlmmApi
from lptrace.infrastructure.gateways.solana_rpc import SolanaRpcGateway

logger = logging.getLogger("LpTrace")


async def run(settings: Settings) -> int:
    config = settings.to_pipeline_config()
    columns, rows = read_rows(settings.data_file)
    submissions = build_submissions(rows, columns, config)

    cache = RedisService(settings.redis_url)
    solana = SolanaRpcGateway(settings.rpc_url, origin_url=settings.origin_url)
    pairs = MeteoraDlmmApi(settings.dlmm_api_url, cache=cache)
    tokens = JupiterTokenList(settings.token_list_url, cache=cache)
    prices = DefiLlamaPriceOracle(settings.price_api_url)
    try:
        pipeline = SubmissionPipeline(solana, solana, pairs, tokens, prices, config)
        report = await pipeline.run(submissions)
    finally:
        for gateway in (solana, pairs, tokens, prices):
            await gateway.close()

    write_rows(settings.output_file, report, columns)
    valid = sum(1 for row in report if row.get("validSubmission"))
    logger.info(f"{valid} of {len(report)} submissions are valid")
    return valid


def main() -> int:
    load_dotenv()
    try:
        settings = load_settings()
    except ConfigurationError as e:
        logging.basicConfig(level=logging.INFO)
        logger.error(str(e))
        return 1
    logging.basicConfig(level=settings.log_level.upper())

    started = time.monotonic()
    try:
        asyncio.run(run(settings))
    except ConfigurationError as e:
        logger.error(str(e))
        return 1
    logger.info(f"Done in {time.monotonic() - started:.1f}s")
    return 0


if __name__ == "__main__":
    sys.exit(main())
