# Copyright (c) 2025 Voxgig Ltd. MIT LICENSE.
#
# Struct Mapper
# =============
#
# Build a new JSON-like data structure from a source structure, driven by
# a mapping template. The template is plain data: any map carrying a
# `source` (or `sources`) key is a mapping node, and is replaced by the
# value found at that key path in the source, optionally gated by
# conditions, passed through transform functions, and backed by a
# default. Everything else in the template is copied as is.
#
# Main utilities
# - map: map a source structure to a new structure using a template.
# - Mapper: the mapping evaluator, holding source, template and options.
# - resolvesource: resolve one key path, or a list of key paths.
# - checkcondition: check that all condition functions are met.
# - transformvalue: run a chain of transform functions.
# - resolvetransformconditions: pick the first conditional transform met.
#
# Minor utilities
# - getpath: get the value at a dotted key path.
# - searchpath: find all values matching a key path with `*` wildcards.
# - resolvepath: getpath or searchpath, collapsing single matches.
# - parsefunc: parse the `!` and `@` prefixes of a function name.
# - invoke: call a single function from the function table.
# - isnode, ismap, islist: identify value kinds.
# - getprop: safely get a property value by key.
# - walk: walk a node tree, children before parents, without mutation.
# - stringify: human-friendly string version of a value.


from typing import Any, Callable, Dict, Iterator, List, NamedTuple, Optional
import logging
import json


log = logging.getLogger('struct_mapper')


# Directive keys of a mapping node.
S_source = 'source'
S_sources = 'sources'
S_condition = 'condition'
S_conditions = 'conditions'
S_default = 'default'
S_transform = 'transform'
S_transforms = 'transforms'
S_transformEach = 'transformEach'

# Function name prefixes.
S_INVERT = '!'
S_NOFIRST = '@'

# General strings.
S_MT = ''
S_DT = '.'
S_WILD = '*'


class Absent:
    """
    No value resolved. Distinct from None, which is a valid (null) value.
    There is only one instance: ABSENT.
    """
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return '<absent>'

    def __reduce__(self):
        # Copies and pickles resolve to the module singleton.
        return 'ABSENT'


ABSENT = Absent()


class MappingError(ValueError):
    """Invalid use of the mapper: bad source, template or options."""


class FuncRef(NamedTuple):
    name: str        # Function name, prefixes removed.
    invert: bool     # `!`: negate a boolean result.
    nofirst: bool    # `@`: do not pass the current value as first argument.


def isnode(val: Any = ABSENT) -> bool:
    "Value is a node - a map (dict) or list."
    return isinstance(val, (dict, list))


def ismap(val: Any = ABSENT) -> bool:
    "Value is a map (dict)."
    return isinstance(val, dict)


def islist(val: Any = ABSENT) -> bool:
    "Value is a list."
    return isinstance(val, list)


def aslist(val: Any) -> List[Any]:
    "A list stays as is, anything else is wrapped."
    return val if islist(val) else [val]


def getprop(val: Any = ABSENT, key: Any = ABSENT, alt: Any = ABSENT) -> Any:
    """
    Safely get a property of a node. Non-nodes have no properties.
    List keys must be non-negative indexes (integers or digit strings).
    If the key is not found, return the alternative value.
    """
    if ismap(val):
        return val.get(key, alt)

    if islist(val):
        if isinstance(key, bool):
            return alt
        if isinstance(key, str):
            if not key.isdigit():
                return alt
            key = int(key)
        if isinstance(key, int) and 0 <= key < len(val):
            return val[key]

    return alt


def stringify(val: Any, maxlen: Optional[int] = None) -> str:
    "Safely stringify a value for printing (NOT JSON!)."
    if val is ABSENT:
        return S_MT

    if isinstance(val, str):
        valstr = val
    else:
        try:
            valstr = json.dumps(val, sort_keys=True, separators=(',', ':'))
            valstr = valstr.replace('"', '')
        except (TypeError, ValueError):
            valstr = str(val)

    if maxlen is not None and maxlen < len(valstr):
        valstr = valstr[:maxlen - 3] + '...' if 3 < maxlen else valstr[:maxlen]

    return valstr


def walk(
        # These arguments are the public interface.
        val: Any,
        apply: Callable[[Any, Any, Any, List[str]], Any],

        # These arguments are used for recursive state.
        key: Any = ABSENT,
        parent: Any = ABSENT,
        path: Optional[List[str]] = None
):
    """
    Walk a data structure depth-first, calling apply at each node (after
    children). New containers are built on the way up, so val is never
    modified; parent is the original container of val.
    """
    if path is None:
        path = []

    if ismap(val):
        val = {ckey: walk(child, apply, ckey, val, path + [str(ckey)])
               for ckey, child in val.items()}
    elif islist(val):
        val = [walk(child, apply, cI, val, path + [str(cI)])
               for cI, child in enumerate(val)]

    # Nodes are applied *after* their children.
    # For the root node, key and parent are ABSENT.
    return apply(key, val, parent, path)


def strip(val: Any) -> Any:
    "Remove ABSENT from a tree: map keys are dropped, list slots become None."
    if ismap(val):
        return {k: strip(v) for k, v in val.items() if v is not ABSENT}
    if islist(val):
        return [None if v is ABSENT else strip(v) for v in val]
    return None if val is ABSENT else val


# Path resolution
# ===============

def getpath(store: Any, path: str) -> Any:
    """
    Get the value at a dotted key path, such as `a.b.0.c`.
    Returns ABSENT if any part of the path is missing.
    """
    val = store
    for part in path.split(S_DT):
        val = getprop(val, part)
        if val is ABSENT:
            break
    return val


def searchpath(store: Any, path: str) -> List[Any]:
    """
    Find all values at a key path where a `*` part matches every key
    (or index) at that level. Missing branches appear as ABSENT.
    """
    return list(_search(store, path.split(S_DT), 0))


def _search(val: Any, parts: List[str], pI: int) -> Iterator[Any]:
    if pI == len(parts):
        yield val
        return

    part = parts[pI]
    if S_WILD == part:
        if ismap(val):
            children = list(val.values())
        elif islist(val):
            children = val
        else:
            children = []
        for child in children:
            yield from _search(child, parts, pI + 1)
    else:
        child = getprop(val, part)
        if child is ABSENT:
            yield ABSENT
        else:
            yield from _search(child, parts, pI + 1)


def resolvepath(store: Any, path: Any) -> Any:
    """
    Resolve a single key path. Wildcard paths return ABSENT for no match,
    the value itself for exactly one match, or the list of matches.
    """
    if not isinstance(path, str):
        raise MappingError('Invalid source path: ' + stringify(path, 44))

    if S_WILD not in path.split(S_DT):
        return getpath(store, path)

    found = [val for val in searchpath(store, path) if val is not ABSENT]
    if 0 == len(found):
        return ABSENT
    if 1 == len(found):
        return found[0]
    return found


def resolvesource(store: Any, spec: Any) -> Any:
    """
    Resolve a source spec: one key path, or a list of key paths. For a list,
    ABSENT entries are kept so that indexes match the list of paths, unless
    every path is absent, in which case the result is ABSENT.
    """
    if islist(spec):
        vals = [resolvepath(store, path) for path in spec]
        if all(val is ABSENT for val in vals):
            return ABSENT
        return vals

    return resolvepath(store, spec)


# Function calls
# ==============

# Function calls are single key maps: { name: [arg1, arg2, ...] }.
# The name can have the prefixes `!` and `@` (in any order):
# `!` negates boolean results, and `@` drops the current value
# that is otherwise passed as the first argument.
def parsefunc(fname: str) -> FuncRef:
    name = fname
    invert = False
    nofirst = False

    while name:
        if S_INVERT == name[0] and not invert:
            invert = True
        elif S_NOFIRST == name[0] and not nofirst:
            nofirst = True
        else:
            break
        name = name[1:]

    return FuncRef(name, invert, nofirst)


def funcname(call: Any) -> str:
    "Name of a function call, prefixes included, for messages."
    if ismap(call) and 0 < len(call):
        return str(next(iter(call)))
    return stringify(call, 44)


def _lookup(functions: Any, name: str) -> Callable:
    if ismap(functions):
        func = functions.get(name)
    else:
        # Object methods are bound to the object itself. Private and
        # special attributes are not functions of the table.
        func = getattr(functions, name, None) if name and not name.startswith('_') else None

    if not callable(func):
        raise MappingError('Unknown function: ' + name)

    return func


def invoke(functions: Any, call: Any, current: Any) -> Any:
    """
    Call the function named by a function call object. Errors raised by
    the function, or by a failed lookup, propagate to the caller.
    """
    if not ismap(call) or 1 != len(call):
        raise MappingError('Invalid function call: ' + stringify(call, 44))

    fname, params = next(iter(call.items()))
    ref = parsefunc(fname)
    func = _lookup(functions, ref.name)

    args = list(aslist(params))
    if not ref.nofirst:
        args = [current] + args

    out = func(*args)

    # Only booleans are inverted.
    if ref.invert and isinstance(out, bool):
        out = not out

    return out


def checkcondition(
        functions: Any,
        sources: Any,
        calls: Any,
        logger: Optional[logging.Logger] = None
) -> bool:
    """
    Check condition function calls against the source value(s).
    Each call must return exactly True. A call that fails counts as False.
    """
    logger = logger or log
    met = True

    for call in aslist(calls):
        try:
            if invoke(functions, call, sources) is not True:
                met = False
        except Exception as err:
            logger.warning('Condition (%s): %s', funcname(call), err)
            met = False

    return met


def transformvalue(
        functions: Any,
        value: Any,
        calls: Any,
        logger: Optional[logging.Logger] = None
) -> Any:
    """
    Run transform function calls in order, each taking the result of the
    one before. If any call fails, the whole result is ABSENT.
    """
    logger = logger or log
    out = value

    for call in aslist(calls):
        try:
            out = invoke(functions, call, out)
        except Exception as err:
            logger.warning('Transform (%s): %s', funcname(call), err)
            return ABSENT

    return out


def resolvetransformconditions(
        functions: Any,
        sources: Any,
        spec: Any,
        prefix: str = S_MT,
        logger: Optional[logging.Logger] = None
) -> Any:
    """
    Select the transform calls to run. A transform spec is either a list
    of function calls, returned unchanged, or a list of conditional groups:

        [
          { condition: { isA: [] }, transform: [{ fromA: [] }] },
          { condition: { isB: [] }, transform: [{ fromB: [] }] },
        ]

    The transform of the first group whose condition is met (checked
    against the source value(s)) is returned, or ABSENT if none is met.
    """
    logger = logger or log
    entries = aslist(spec)

    conditional = [entry for entry in entries
                   if _directive(entry, prefix, S_condition, S_conditions) is not ABSENT]

    if 0 < len(conditional) and len(conditional) < len(entries):
        raise MappingError('Mixing of conditional transforms and normal transforms not allowed')

    if 0 == len(conditional):
        return entries

    for group in conditional:
        condition = _directive(group, prefix, S_condition, S_conditions)
        if checkcondition(functions, sources, condition, logger):
            return _directive(group, prefix, S_transform, S_transforms)

    logger.debug('No conditional transform met for: %s', stringify(sources, 44))
    return ABSENT


def _directive(node: Any, prefix: str, *names: str) -> Any:
    """
    First directive value given in the node, or ABSENT. A None value
    falls through to the next synonym, and is returned only if no
    synonym has a value.
    """
    out = ABSENT
    if ismap(node):
        for name in names:
            val = node.get(prefix + name, ABSENT)
            if val is None:
                out = None
            elif val is not ABSENT:
                return val
    return out


# Mapping
# =======

class Mapper:
    """
    Map a source structure to a new structure defined by a mapping template.

    functions: function table, a dict of name to callable, or any object
        whose methods are the functions.
    preprocess: optional function applied to every resolved source value
        (to each value separately when there are multiple source paths).
    prefix: prepended to every directive key, e.g. '_' for `_source`.
    keep_absent: leave ABSENT markers in the output, instead of dropping
        map keys and nulling list entries.
    """

    def __init__(
            self,
            source: Any,
            mapping: Any,
            functions: Any = None,
            preprocess: Optional[Callable[[Any], Any]] = None,
            prefix: str = S_MT,
            keep_absent: bool = False,
            logger: Optional[logging.Logger] = None
    ) -> None:
        if not isnode(source):
            raise MappingError('No source object provided')
        if not isnode(mapping):
            raise MappingError('No mapping provided')
        if preprocess is not None and not callable(preprocess):
            raise MappingError('Preprocess is not a function: ' + stringify(preprocess, 44))

        self.source = source
        self.mapping = mapping
        self.functions = {} if functions is None else functions
        self.preprocess = preprocess
        self.prefix = prefix or S_MT
        self.keep_absent = keep_absent
        self._log = logger or log

    def map(self) -> Any:
        "Return the new structure. Neither source nor mapping is modified."
        out = walk(self.mapping, self._resolvenode)
        return out if self.keep_absent else strip(out)

    def ismappingnode(self, val: Any) -> bool:
        "A map with a string or list source directive."
        spec = self._directive(val, S_source, S_sources)
        return isinstance(spec, str) or islist(spec)

    def mapvalue(self, node: Dict[str, Any]) -> Any:
        """
        Resolve a single mapping node. Nested mapping nodes (function
        parameters, default) must already be resolved.
        """
        sourcespec = self._directive(node, S_source, S_sources)
        conditions = self._directive(node, S_condition, S_conditions)
        default = self._directive(node, S_default)
        transforms = self._directive(node, S_transform, S_transforms)
        transformeach = self._directive(node, S_transformEach)

        sources = resolvesource(self.source, sourcespec)

        # Condition not met -> ignore transforms and return default immediately.
        if conditions and not checkcondition(self.functions, sources, conditions, self._log):
            return default

        value = sources
        if self.preprocess is not None:
            # Multiple source paths are preprocessed independently, absent
            # slots are kept. When all of them are absent, nothing is.
            if islist(sourcespec):
                if islist(sources):
                    value = [val if val is ABSENT else self.preprocess(val) for val in sources]
            else:
                value = self.preprocess(sources)

        # Absent values are not transformed.
        if transforms and value is not ABSENT:
            calls = resolvetransformconditions(
                self.functions, sources, transforms, self.prefix, self._log)
            if calls is not ABSENT:
                value = transformvalue(self.functions, value, calls, self._log)

        if transformeach and islist(value):
            calls = resolvetransformconditions(
                self.functions, sources, transformeach, self.prefix, self._log)
            if calls is not ABSENT:
                # Absent elements are not transformed, as with transform above.
                value = [val if val is ABSENT else
                         transformvalue(self.functions, val, calls, self._log)
                         for val in value]

        # Default is used when the source, preprocessed or transformed
        # value is absent (a failed transform is absent).
        return default if value is ABSENT else value

    def _resolvenode(self, _key, val, _parent, path):
        if not self.ismappingnode(val):
            return val

        out = self.mapvalue(val)
        self._log.debug('Mapped %s: %s', S_DT.join(path) or '<root>', stringify(out, 44))
        return out

    def _directive(self, node, *names):
        return _directive(node, self.prefix, *names)


def map(
        source: Any,
        mapping: Any,
        functions: Any = None,
        preprocess: Optional[Callable[[Any], Any]] = None,
        **options: Any
) -> Any:
    """
    Map source to a new structure defined by mapping.
    Options are passed to Mapper: prefix, keep_absent, logger.
    """
    return Mapper(source, mapping, functions, preprocess, **options).map()


# Create a StructMapper class with all utility functions as attributes
class StructMapper:
    def __init__(self):
        self.aslist = aslist
        self.checkcondition = checkcondition
        self.getpath = getpath
        self.getprop = getprop
        self.invoke = invoke
        self.islist = islist
        self.ismap = ismap
        self.isnode = isnode
        self.map = map
        self.parsefunc = parsefunc
        self.resolvepath = resolvepath
        self.resolvesource = resolvesource
        self.resolvetransformconditions = resolvetransformconditions
        self.searchpath = searchpath
        self.stringify = stringify
        self.strip = strip
        self.transformvalue = transformvalue
        self.walk = walk


__all__ = [
    'ABSENT',
    'Absent',
    'FuncRef',
    'Mapper',
    'MappingError',
    'StructMapper',
    'aslist',
    'checkcondition',
    'getpath',
    'getprop',
    'invoke',
    'islist',
    'ismap',
    'isnode',
    'map',
    'parsefunc',
    'resolvepath',
    'resolvesource',
    'resolvetransformconditions',
    'searchpath',
    'stringify',
    'strip',
    'transformvalue',
    'walk',
]
