from astra_shell.planner import RulePlanner, parse_clause, split_clauses


def test_split_clauses_on_sequencing_connectors():
    text = "create directory build then copy a.txt to build; list files in build && show disk usage"

    assert split_clauses(text) == [
        "create directory build",
        "copy a.txt to build",
        "list files in build",
        "show disk usage",
    ]


def test_parse_clause_maps_known_phrases_to_commands():
    assert parse_clause("create directory build").command == "mkdir -p build"
    assert parse_clause("please list files in src.").command == "ls -la src"
    assert parse_clause("list files").command == "ls -la ."
    assert parse_clause("move old.txt to new.txt").command == "mv -- old.txt new.txt"


def test_parse_clause_quotes_arguments_for_the_shell():
    step = parse_clause("find files named *.py")

    assert step.command == "find . -name '*.py'"


def test_parse_clause_builds_non_shell_tool_requests():
    read = parse_clause("read file notes.txt")
    stats = parse_clause("show system stats")

    assert read.request.tool_name == "ReadFile"
    assert read.request.parameters == {"path": "notes.txt"}
    assert read.command is None
    assert stats.request.tool_name == "Stat"


def test_parse_clause_returns_none_for_unknown_phrases():
    assert parse_clause("write me a poem") is None


def test_planner_builds_plan_with_full_confidence():
    plan = RulePlanner().plan("create directory build then copy a.txt to build then list files in build")

    assert plan is not None
    assert len(plan) == 3
    assert plan.confidence == 1.0
    assert [step.command for step in plan.steps] == [
        "mkdir -p build",
        "cp -r -- a.txt build",
        "ls -la build",
    ]
    assert plan.skipped == ()


def test_planner_confidence_is_fraction_of_understood_clauses():
    text = "create directory out then juggle the cats then list files in out then sing loudly then paint the fence"

    plan = RulePlanner().plan(text)

    assert plan is not None
    assert len(plan) == 2
    assert plan.confidence == 0.4
    assert plan.skipped == ("juggle the cats", "sing loudly", "paint the fence")


def test_single_requests_are_left_to_the_model():
    planner = RulePlanner()

    assert planner.plan("list files in src") is None
    assert planner.plan("what is 2+2") is None
    assert planner.plan("list files then write me a poem") is None
