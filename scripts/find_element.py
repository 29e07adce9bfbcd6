import argparse
import logging

from sniffr.agent.orchestrator import run_search_blocking
from sniffr.config import settings


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--url", required=True, help="Page to search")
    parser.add_argument("--query", required=True, help="What to look for, e.g. 'billing' or 'portal'")
    parser.add_argument("--gateway", default=None, help="Ranking gateway URL (defaults to GATEWAY_URL)")
    parser.add_argument("--local-only", action="store_true", help="Skip the remote ranker and score locally")
    args = parser.parse_args()

    logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s %(message)s")

    result = run_search_blocking(
        args.url,
        args.query,
        gateway_url=args.gateway,
        use_remote=not args.local_only,
    )
    print(result.message)
    print(f"source={result.source} highlighted={result.highlighted} query_id={result.query_id}")


if __name__ == "__main__":
    main()
