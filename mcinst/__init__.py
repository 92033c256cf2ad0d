import sys
import os
import argparse
from pydantic import ValidationError
from mcinst.manager import McInstManager
from mcinst.exceptions import McInstRuntimeError
from mcinst.utils.convert import str_to_bool
from mcinst.info import __app_name__, __description__

__version__ = ""
with open(os.path.join(os.path.dirname(__file__), "VERSION"), "r") as f:
    __version__ = f.read().strip()


def _add_resource_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--name", required=True, help="Display name of the instance")
    parser.add_argument("--java-path", dest="java_path", default="", help="Java runtime (defaults to one matching the game version)")
    parser.add_argument("--max-memory", dest="max_memory", type=int, required=True, help="Max memory in MB")
    parser.add_argument("--min-memory", dest="min_memory", type=int, required=True, help="Min memory in MB")
    parser.add_argument("--port", type=int, required=True, help="Server port")


def main():
    # get args from command line
    parser = argparse.ArgumentParser(description=__description__)

    parser.add_argument("--config", dest="config_file", help="Path to the config file")
    parser.add_argument("--data", dest="data_directory", help="Path to the data directory")
    parser.add_argument("--log", dest="log_file", help="Log file where to write logs")
    parser.add_argument("--log-level", dest="log_level", help="Log level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    parser.add_argument("--version", action="version", version=f"{__app_name__} {__version__}")

    subparsers = parser.add_subparsers(title="Commands", dest="command")

    subparsers.add_parser("list", help="List instances")

    create_parser = subparsers.add_parser("create", help="Create an instance from a server jar")
    _add_resource_args(create_parser)
    create_parser.add_argument("--core-type", dest="core_type", required=True, help="Server core type (vanilla, paper, forge, ...)")
    create_parser.add_argument("--mc-version", dest="mc_version", required=True, help="Game version")
    create_parser.add_argument("--jar-path", dest="jar_path", required=True, help="Server jar or launch script")
    create_parser.add_argument("--startup-mode", dest="startup_mode", default="jar", choices=["jar", "bat", "sh"], help="How the server is launched")

    import_parser = subparsers.add_parser("import-server", help="Import an existing server jar or launch script")
    _add_resource_args(import_parser)
    import_parser.add_argument("--jar-path", dest="jar_path", required=True, help="Server jar or launch script")
    import_parser.add_argument("--startup-mode", dest="startup_mode", required=True, choices=["jar", "bat", "sh"], help="How the server is launched")
    import_parser.add_argument("--online-mode", dest="online_mode", type=str_to_bool, required=True, help="Enable online mode (true/false)")

    modpack_parser = subparsers.add_parser("import-modpack", help="Import a modpack archive")
    _add_resource_args(modpack_parser)
    modpack_parser.add_argument("--modpack-path", dest="modpack_path", required=True, help="Modpack archive (.zip, .mrpack)")

    existing_parser = subparsers.add_parser("add-existing", help="Adopt an existing server directory")
    _add_resource_args(existing_parser)
    existing_parser.add_argument("--server-path", dest="server_path", required=True, help="Server directory")
    existing_parser.add_argument("--startup-mode", dest="startup_mode", required=True, choices=["jar", "bat", "sh"], help="Preferred launch mode")
    existing_parser.add_argument("--executable-path", dest="executable_path", help="Explicit jar or script to launch")

    rename_parser = subparsers.add_parser("rename", help="Rename an instance")
    rename_parser.add_argument("--id", required=True, help="Instance id")
    rename_parser.add_argument("--name", required=True, help="New display name")

    delete_parser = subparsers.add_parser("delete", help="Delete an instance")
    delete_parser.add_argument("--id", required=True, help="Instance id")

    run_parser = subparsers.add_parser("run", help="Run an instance in the foreground")
    run_parser.add_argument("--id", required=True, help="Instance id")
    run_parser.add_argument("--interactive", action="store_true", help="Forward standard input lines as server commands")

    global_keys = ["log_file", "log_level", "config_file", "data_directory"]

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    global_args = {key: getattr(args, key) or "" for key in global_keys}
    cmd_args = {k: v for k, v in vars(args).items() if k not in global_keys}

    try:
        mcinst = McInstManager(**global_args)
    except ValidationError as e:
        print(f"Configuration file contains {e.error_count()} error(s):")

        for error in e.errors(include_url=False):
            loc = ".".join(str(x) for x in error["loc"]) if error["loc"] else "general"
            print(f"  - {loc}: {error['msg']}")

        print(f"\nCheck documentation for more information on how to configure {__app_name__}")
        sys.exit(2)
    except McInstRuntimeError as e:
        print(e)
        sys.exit(2)

    sys.exit(mcinst.run(**cmd_args))
