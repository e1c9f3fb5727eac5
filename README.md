# promqlplan

Tools for working with PromQL queries before they are executed:

- `promqlplan.lexer`: a lexer that turns query text (or series descriptions) into tokens.
- `promqlplan.nodes`: expression tree nodes, label matchers and tree-walking helpers
  (`children`, `walk`, `inspect`, `extract_selectors`).
- `promqlplan.functions`: the table of known PromQL functions (`FUNCTIONS`, `get_function`).
- `promqlplan.plan`: the logical plan (`Opts`, `Plan`, `new_plan`) and the optimizer lists
  `NO_OPTIMIZERS`, `DEFAULT_OPTIMIZERS` and `ALL_OPTIMIZERS`.
- Optimizers that rewrite a plan's expression tree (see below).

The package has no dependencies outside the standard library.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Lexing

```python
from promqlplan.lexer import lex, ItemType

lexer = lex('rate(http_requests_total{job="api"}[5m])')
item = lexer.next_item()
while item.typ is not ItemType.EOF:
    print(item.typ, item.pos, item.val)
    item = lexer.next_item()
```

A `Lexer` can also be iterated; iteration stops after the final `EOF` or error item.
Lexing errors show up as items of type `ItemType.ERROR` whose value is the message.
Pass `series_desc=True` to `lex` to tokenize a series description such as
`metric 1+1x4`. Positions are character offsets into the input.

## Expression trees

Trees are built from the node classes in `promqlplan.nodes`, for example
`VectorSelector`, `MatrixSelector`, `AggregateExpr`, `BinaryExpr`, `Call`,
`NumberLiteral` and `SubqueryExpr`. Label matchers are `Matcher(type, name, value)`
with a `MatchType`; regular-expression matchers are anchored, and `Matcher.matches`
tests a value against them. `str()` of any node gives its PromQL text.

```python
from promqlplan.functions import get_function
from promqlplan.nodes import Call, Matcher, MatchType, VectorSelector
from promqlplan.plan import Opts, new_plan
from promqlplan.trim_sorts import TrimSortFunctions

selector = VectorSelector(
    name="X", label_matchers=[Matcher(MatchType.EQUAL, "__name__", "X")]
)
expr = Call(get_function("sort"), [selector])

plan = new_plan(expr, Opts()).optimize([TrimSortFunctions()])
print(plan.expr)  # X
```

## Plans and optimizers

`new_plan(expr, opts)` takes an expression tree and an `Opts` holding the query
`start`, `end`, `step` and `lookback_delta`. It wraps step-invariant parts of the
tree in `StepInvariantExpr`, resolves `@ start()` and `@ end()` modifiers to
timestamps, and folds `@` timestamps into selector and subquery offsets.
`Plan.optimize(optimizers)` runs each optimizer in turn on the plan's expression
and returns a new `Plan`.

Available optimizers, each with an `optimize(expr, opts)` method:

- `SortMatchers` (`promqlplan.sort_matchers`) sorts the label matchers of every
  selector by name.
- `MergeSelectsOptimizer` (`promqlplan.merge_selects`) replaces a selector that
  narrows another selector of the same metric with a `FilteredSelector`
  (`promqlplan.filter`) over the broader one, printed as
  `filter([c="d"], metric{a="b"})`.
- `PropagateMatchersOptimizer` (`promqlplan.propagate_selectors`) copies label
  matchers between the two selectors of a one-to-one, non-comparison binary
  operation on different metrics.
- `TrimSortFunctions` (`promqlplan.trim_sorts`) removes `sort` and `sort_desc` calls.
- `DistributedExecutionOptimizer` (`promqlplan.distribute`) splits a query across
  the engines of a `RemoteEndpoints`. Supported aggregations (`sum`, `min`, `max`,
  `group`, `count`, `topk`, `bottomk`) are pushed down to each engine, with the
  engines' external label names added to the grouping; remote results are wrapped
  in `Deduplicate` (printed `dedup(...)`), or `Noop` (`noop`) when no engine
  applies. `absent` and `absent_over_time` are sent to every engine and the
  results multiplied. An engine is skipped when its time range or external
  labels cannot match the query.

An engine is any object with `min_t()` and `max_t()` returning milliseconds since
the epoch and `label_sets()` returning a sequence of label-name-to-value mappings.

## What this package does not do

- It does not parse query text into an expression tree; the lexer produces tokens
  only, and trees are built from the node classes directly.
- It does not execute queries or store samples. `RemoteExecution` nodes only
  describe which engine would run which query from which start time.
- It has no command-line program.