import argparse
import sys

from config import Config
from src.errors import IconForgeError
from src.logger import setup_logging
import src.orchestrator as orchestrator


def main(argv=None):
    parser = argparse.ArgumentParser(description="Convert a PNG or JPEG into .ico and .icns icons.")
    parser.add_argument("image", help="Path to the source PNG/JPEG image")
    parser.add_argument("--out", default=None, help="Directory for the generated icons")
    args = parser.parse_args(argv)

    config = Config()
    _, log_filepath = setup_logging(config.get("LOG_DIR", "logs"))
    print(f"Logging to {log_filepath}")

    converter, store = orchestrator.build_service(config, materialize=False)
    try:
        orchestrator.run(args.image, out_dir=args.out, converter=converter, store=store)
    except IconForgeError as e:
        print(f"Conversion failed: {e}", file=sys.stderr)
        return 1
    finally:
        store.close()
    return 0


if __name__ == '__main__':
    sys.exit(main())
