"""
storagefs command line interface

Disks are configured from the environment (see storagefs/config.py): a 'local'
disk is always available, an 's3' disk when STORAGEFS_S3_HOST and its
credentials are set.
"""

import argparse
import asyncio
import inspect
import json
import logging
import sys
from datetime import timedelta
from enum import Enum

from storagefs.config import ENV_PREFIX, get_settings
from storagefs.entities import Directory
from storagefs.manager import FilesystemManager


def bold(x):
    return "\033[1m" + str(x) + "\033[0m"


async def _stdin_chunks(chunk_size: int = 64 * 1024):
    while chunk := await asyncio.to_thread(sys.stdin.buffer.read, chunk_size):
        yield chunk


async def ls(args):
    async with FilesystemManager.from_settings() as manager:
        disk = manager.disk(args.disk)
        directory = disk.filesystem.directory(args.path or "/")
        async for entity in directory.list(recursive=args.recursive):
            suffix = disk.filesystem.separator if isinstance(entity, Directory) else ""
            print(f"{entity.path}{suffix}")


async def cat(args):
    async with FilesystemManager.from_settings() as manager:
        async for chunk in manager.disk(args.disk).filesystem.file(args.path).open_read():
            sys.stdout.buffer.write(chunk)
        sys.stdout.buffer.flush()


async def put(args):
    async with FilesystemManager.from_settings() as manager:
        disk = manager.disk(args.disk)
        await disk.ensure_ready()
        options = {"content_type": args.content_type} if args.content_type else None
        if args.source == "-":
            ok = await disk.put(args.path, _stdin_chunks(), options)
        else:
            with open(args.source, "rb") as f:
                ok = await disk.put(args.path, f.read(), options)
        if not ok:
            logging.error(f"Could not write {args.path}")
            sys.exit(1)
        logging.info(f"Wrote {args.path} to disk {disk.name}")


async def rm(args):
    async with FilesystemManager.from_settings() as manager:
        disk = manager.disk(args.disk)
        if args.recursive:
            ok = all([await disk.delete_directory(path) for path in args.paths])
        else:
            ok = await disk.delete(args.paths)
        if not ok:
            logging.error("Not all paths could be deleted")
            sys.exit(1)


async def url(args):
    async with FilesystemManager.from_settings() as manager:
        print(manager.cloud(args.disk).url(args.path))


async def presign(args):
    expires = timedelta(seconds=args.expires)
    async with FilesystemManager.from_settings() as manager:
        disk = manager.cloud(args.disk)
        if args.upload:
            options = {"method": args.method}
            if args.content_type:
                options["content_type"] = args.content_type
            print(json.dumps(await disk.temporary_upload_url(args.path, expires, options), indent=2))
        else:
            print(await disk.temporary_url(args.path, expires))


def config(_args):
    settings = get_settings()
    print(f"# Reading settings from environment and {settings.env_file}")
    for fieldname, fieldinfo in type(settings).model_fields.items():
        value = getattr(settings, fieldname)
        if doc := fieldinfo.description:
            print(f"# {doc}")
        if isinstance(value, Enum):
            value = value.value
        if value is None:
            print(f"#{ENV_PREFIX}{fieldname}=\n")
        else:
            print(f"{ENV_PREFIX}{fieldname}={value}\n")


def main():
    parser = argparse.ArgumentParser(description=__doc__, prog="python -m storagefs")
    parser.add_argument("-d", "--disk", help="Name of the disk to use (default: the configured default disk)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug logging")

    subparsers = parser.add_subparsers(dest="action", title="action", help="Action to perform:", required=True)
    p = subparsers.add_parser("ls", help="List a directory")
    p.add_argument("path", nargs="?", help="Directory to list (default: the root)")
    p.add_argument("-r", "--recursive", action="store_true", help="List all levels below the directory")
    p.set_defaults(func=ls)

    p = subparsers.add_parser("cat", help="Write the content of a file to stdout")
    p.add_argument("path")
    p.set_defaults(func=cat)

    p = subparsers.add_parser("put", help="Upload a local file (or stdin, using -)")
    p.add_argument("source", help="Local file to upload, or - for stdin")
    p.add_argument("path", help="Destination path on the disk")
    p.add_argument("--content-type", help="Content type to store with the file")
    p.set_defaults(func=put)

    p = subparsers.add_parser("rm", help="Delete files")
    p.add_argument("paths", nargs="+")
    p.add_argument("-r", "--recursive", action="store_true", help="Delete directories and everything below them")
    p.set_defaults(func=rm)

    p = subparsers.add_parser("url", help="Print the public URL of a file on the cloud disk")
    p.add_argument("path")
    p.set_defaults(func=url)

    p = subparsers.add_parser("presign", help="Print a temporary URL for a file on the cloud disk")
    p.add_argument("path")
    p.add_argument("-e", "--expires", type=int, default=3600, help="Validity in seconds (default: 3600)")
    p.add_argument("-u", "--upload", action="store_true", help="Create an upload instead of a download URL")
    p.add_argument("-m", "--method", choices=["PUT", "POST"], default="PUT", help="Upload method (default: PUT)")
    p.add_argument("--content-type", help="Content type the upload must use")
    p.set_defaults(func=presign)

    p = subparsers.add_parser("config", help="Show the current settings as environment variables")
    p.set_defaults(func=config)

    args = parser.parse_args()

    logging.basicConfig(
        format="[%(levelname)-7s:%(name)-15s] %(message)s", level=logging.DEBUG if args.verbose else logging.INFO
    )
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)

    if inspect.iscoroutinefunction(args.func):
        asyncio.run(args.func(args))
    else:
        args.func(args)


if __name__ == "__main__":
    main()
