from rich.pretty import pprint

from structcli import *

__styles__ = {
    "prog-name": "bold #FFFFFF",
}

tool = app("tool", version="0.1.0", descr="maintenance tool for the demo database")
db = tool.category("db", descr="database maintenance")


@db.command(options={"dry-run": Option(type=bool, alias="n", descr="show what would change")})
def migrate(args):
    """apply pending migrations"""
    pprint(vars(args) | {"__node__": args.__node__})


@db.command(params={"fixture": Param(required=True, descr="fixture file to load")})
def seed(args):
    """load a fixture into the database"""
    if not args.fixture.endswith(".json"):
        raise InvalidError("fixture must be a .json file")
    pprint(args.fixture)


if __name__ == '__main__':
    run(tool)
