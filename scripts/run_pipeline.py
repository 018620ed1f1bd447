# file: scripts/run_pipeline.py
#!/usr/bin/env python3
"""Run pipeline stages from the command line (all of them by default)"""

import sys
import asyncio
import argparse
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.logging_config import setup_logging
from app.orchestrator import Orchestrator, STAGES

async def run(stages):
    orchestrator = Orchestrator()
    aborted = False
    try:
        async for event in orchestrator.run_pipeline(stages):
            if event["type"] in ("agent_end", "error"):
                print(f"[{event['agent']}] {event['message']}")
            if event["type"] == "pipeline_end":
                aborted = event["payload"].get("aborted", False)
    finally:
        await orchestrator.registry.close()
    return 1 if aborted else 0

def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("stages", nargs="*", help=f"subset of: {', '.join(STAGES)}")
    args = parser.parse_args()
    setup_logging()
    try:
        code = asyncio.run(run(args.stages or None))
    except ValueError as e:
        parser.error(str(e))
    sys.exit(code)

if __name__ == "__main__":
    main()
