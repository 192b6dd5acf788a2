import argparse

from glustermgmt.aio.executor import HttpExecutor, LocalExecutor, TcpExecutor


def get_args(description, epilog=""):
    parser = argparse.ArgumentParser(description=description, epilog=epilog)
    parser.add_argument("-n", "--nodes", nargs='*',
                        default=["localhost"],
                        help="Cluster nodes to send commands to. "
                        "By default the gluster CLI of this host is used, "
                        "which requires running on a node of the cluster.")
    parser.add_argument("-e", "--executor", default="local",
                        choices=["local", "http", "tcp"],
                        help="How commands reach the nodes.")
    parser.add_argument("--sudo", action="store_true",
                        help="Run the local gluster CLI through sudo.")
    return parser.parse_known_args()


def get_executor(arguments):
    if arguments.executor == "http":
        return HttpExecutor()
    if arguments.executor == "tcp":
        return TcpExecutor()
    return LocalExecutor(sudo=arguments.sudo)
