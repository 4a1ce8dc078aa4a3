from __future__ import annotations

# Single-entrypoint runner.
#
# Primary way to run the front desk:
#     python -m enrolment_queue.app serve [--mqtt]
#
# The other subcommands start the MQTT-only desk service, the Tk display
# board, or send one desk request from a staff terminal.

import argparse


def main() -> None:
    parser = argparse.ArgumentParser(description="Enrolment Queue - main entrypoint")
    sub = parser.add_subparsers(dest="cmd", required=True)

    def add_mqtt_args(p: argparse.ArgumentParser) -> None:
        # Unset flags fall through to each tool's own defaults (and ENROLMENT_* env).
        p.add_argument("--mqtt-host", default=None)
        p.add_argument("--mqtt-port", type=int, default=None)
        p.add_argument("--namespace", default=None)

    # ---- Normal operation ----
    p_serve = sub.add_parser("serve", help="Start the HTTP/WebSocket desk service")
    add_mqtt_args(p_serve)
    p_serve.add_argument("--host", default=None)
    p_serve.add_argument("--port", type=int, default=None)
    p_serve.add_argument("--mqtt", action="store_true", help="also bridge the queue onto MQTT")
    p_serve.add_argument("--ticket-scheme", choices=("sequential", "rotating"), default=None)

    p_disp = sub.add_parser("display", help="Open the Tk public display board")
    add_mqtt_args(p_disp)

    # ---- MQTT tools ----
    p_mgr = sub.add_parser("manager", help="(advanced) Start the MQTT-only desk service")
    add_mqtt_args(p_mgr)

    p_in = sub.add_parser("checkin", help="Check a student in over MQTT")
    add_mqtt_args(p_in)
    p_in.add_argument("--name", required=True)
    p_in.add_argument("--program", required=True)
    p_in.add_argument("--student-id")
    p_in.add_argument("--email")
    p_in.add_argument("--staff")

    p_st = sub.add_parser("station", help="Run a station action over MQTT")
    add_mqtt_args(p_st)
    p_st.add_argument("action")
    p_st.add_argument("--station", required=True)
    p_st.add_argument("--ticket")
    p_st.add_argument("--staff")
    p_st.add_argument("--note")
    p_st.add_argument("--reason")
    p_st.add_argument("--text")

    args = parser.parse_args()
    mqtt_args: list[str] = []
    if args.mqtt_host is not None:
        mqtt_args += ["--mqtt-host", args.mqtt_host]
    if args.mqtt_port is not None:
        mqtt_args += ["--mqtt-port", str(args.mqtt_port)]
    if args.namespace is not None:
        mqtt_args += ["--namespace", args.namespace]

    if args.cmd == "serve":
        from .server import main as run

        run_args = list(mqtt_args)
        if args.host is not None:
            run_args += ["--host", args.host]
        if args.port is not None:
            run_args += ["--port", str(args.port)]
        if args.mqtt:
            run_args += ["--mqtt"]
        if args.ticket_scheme is not None:
            run_args += ["--ticket-scheme", args.ticket_scheme]
        _dispatch_to_module_main(run, run_args)
        return

    if args.cmd == "display":
        from .gui import main as run

        _dispatch_to_module_main(run, mqtt_args)
        return

    if args.cmd == "manager":
        from .manager import main as run

        _dispatch_to_module_main(run, mqtt_args)
        return

    if args.cmd == "checkin":
        from .desk import main as run

        run_args = ["checkin", *mqtt_args, "--name", args.name, "--program", args.program]
        if args.student_id:
            run_args += ["--student-id", args.student_id]
        if args.email:
            run_args += ["--email", args.email]
        if args.staff:
            run_args += ["--staff", args.staff]
        _dispatch_to_module_main(run, run_args)
        return

    if args.cmd == "station":
        from .desk import main as run

        run_args = ["station", args.action, *mqtt_args, "--station", args.station]
        for flag in ("ticket", "staff", "note", "reason", "text"):
            value = getattr(args, flag)
            if value:
                run_args += [f"--{flag}", value]
        _dispatch_to_module_main(run, run_args)
        return


def _dispatch_to_module_main(module_main, argv: list[str]) -> None:
    import sys

    old_argv = sys.argv[:]
    try:
        sys.argv = [old_argv[0], *argv]
        module_main()
    finally:
        sys.argv = old_argv


if __name__ == "__main__":
    main()
