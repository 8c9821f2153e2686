# struct_mapper init

from .struct_mapper import (
    ABSENT,
    Absent,
    FuncRef,
    Mapper,
    MappingError,
    StructMapper,
    checkcondition,
    getpath,
    getprop,
    invoke,
    islist,
    ismap,
    isnode,
    map,
    parsefunc,
    resolvepath,
    resolvesource,
    resolvetransformconditions,
    searchpath,
    stringify,
    strip,
    transformvalue,
    walk
)


__all__ = [
    'ABSENT',
    'Absent',
    'FuncRef',
    'Mapper',
    'MappingError',
    'StructMapper',
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
