#!/usr/bin/env python3
"""
Command-Line Interface to inspect and maintain a crash log store.
"""
import cmd
import os
import sys
from datetime import timedelta

from crashlog import Logger
from crashlog.core.dto import EventPriority, LogKind
from crashlog.core.errors import CrashLogError


class CrashLogCLI(cmd.Cmd):
    """Interactive CLI for a crash log store."""

    intro = """
╔══════════════════════════════════════════╗
║         Crash & Event Log CLI           ║
╚══════════════════════════════════════════╝

Type 'help' for available commands.
    """
    prompt = "crashlog> "

    def __init__(self, data_dir: str = "./data", logger: Logger = None):
        super().__init__()
        self.logger = logger or Logger(data_dir=data_dir)

    def onecmd(self, line):
        try:
            return super().onecmd(line)
        except CrashLogError as e:
            print(f"Error: {e}")
            return False

    def do_exceptions(self, arg):
        """
        List the exception reports grouped by app version.
        Usage: exceptions [type]
        Example: exceptions ValueError
        """
        exception_type = arg.strip() or None
        collection = self.logger.load_exceptions(exception_type=exception_type)
        if not collection.count:
            print("No exception reports")
            return
        for group in collection:
            print(f"\n{group.app_version} ({group.count})")
            for info in group:
                print(f"  {info.timestamp.isoformat()}  {info.exception_type}: {info.message}")
                print(f"    occurrences={info.occurrences} "
                      f"versions=[{info.min_version}, {info.max_version}]")

    def do_events(self, arg):
        """
        List the events grouped by app version.
        Usage: events [priority]
        Example: events warning
        """
        priority = EventPriority.from_label(arg.strip()) if arg.strip() else None
        collection = self.logger.load_events(priority=priority)
        if not collection.count:
            print("No events")
            return
        for group in collection:
            print(f"\n{group.app_version} ({group.count})")
            for event in group:
                print(f"  {event.timestamp.isoformat()}  [{event.priority.label}] {event.message}")

    def do_event(self, arg):
        """
        Log an event.
        Usage: event <priority> <message>
        Example: event info Application started
        """
        args = arg.split(maxsplit=1)
        if len(args) != 2:
            print("Error: event requires a priority and a message")
            print("Usage: event <priority> <message>")
            return
        priority = EventPriority.from_label(args[0])
        uid = self.logger.log_event(priority, args[1])
        print(f"OK: Logged event {uid}")

    def do_trim(self, arg):
        """
        Trim the stored logs.
        Usage: trim days <n> | trim version <x.y.z.w> | trim count <n>
        Example: trim days 30
        """
        args = arg.split()
        if len(args) != 2 or args[0] not in ("days", "version", "count"):
            print("Usage: trim days <n> | trim version <x.y.z.w> | trim count <n>")
            return

        mode, value = args
        if mode == "version":
            deleted = self.logger.trim(version=value)
        else:
            try:
                number = int(value)
            except ValueError:
                print(f"Error: '{value}' is not a number")
                return
            if mode == "days":
                deleted = self.logger.trim(threshold=timedelta(days=number))
            else:
                deleted = self.logger.trim(count=number)
        print(f"OK: Deleted {len(deleted)} records")

    def do_reset(self, arg):
        """
        Delete every stored log, or the logs of one kind.
        Usage: reset [Exception|Event]
        """
        kind = LogKind.resolve(arg.strip().capitalize()) if arg.strip() else None
        deleted = self.logger.reset(kind=kind)
        print(f"OK: Deleted {len(deleted)} records")

    def do_export(self, arg):
        """
        Copy the store file.
        Usage: export <path>
        """
        path = arg.strip()
        if not path:
            print("Usage: export <path>")
            return
        self.logger.export(path)
        print(f"OK: Exported to {path}")

    def do_json(self, arg):
        """
        Export the logs as JSON, to a file or to the console.
        Usage: json [path]
        """
        path = arg.strip()
        if path:
            self.logger.export_as_json(path=path)
            print(f"OK: Exported to {path}")
        else:
            print(self.logger.export_as_json())

    def do_stats(self, arg):
        """
        Display statistics about the store.
        Usage: stats
        """
        exceptions = self.logger.load_exceptions()
        events = self.logger.load_events()
        print("\n=== Store Statistics ===")
        print(f"Exception reports: {exceptions.logs_count}")
        print(f"Events: {events.logs_count}")
        versions = sorted(set(exceptions.app_versions) | set(events.app_versions), reverse=True)
        print(f"App versions: {', '.join(str(v) for v in versions) or '-'}")
        print(f"Size: {self.logger.size / 1024:.2f} KB")
        print()

    def do_exit(self, arg):
        """
        Exit the CLI.
        Usage: exit
        """
        print("Goodbye!")
        self.logger.close()
        return True

    def do_quit(self, arg):
        """
        Exit the CLI (alias for exit).
        Usage: quit
        """
        return self.do_exit(arg)

    def do_EOF(self, arg):
        """Handle Ctrl+D."""
        print()
        return self.do_exit(arg)

    def emptyline(self):
        """Do nothing on empty line."""
        pass

    def default(self, line):
        """Handle unknown commands."""
        print(f"Unknown command: {line}")
        print("Type 'help' for available commands.")


def main():
    """Main entry point for the CLI."""
    data_dir = "./data"

    if len(sys.argv) > 1:
        if sys.argv[1] in ['-h', '--help']:
            print("Crash Log CLI")
            print("Usage: crashlog [data_directory]")
            print(f"Default data directory: {data_dir}")
            return
        else:
            data_dir = sys.argv[1]

    try:
        cli = CrashLogCLI(data_dir=os.path.abspath(data_dir))
        cli.cmdloop()
    except KeyboardInterrupt:
        print("\nInterrupted. Exiting...")
        sys.exit(0)
    except Exception as e:
        print(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
