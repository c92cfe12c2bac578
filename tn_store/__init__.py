import itertools as it, operator as op, functools as ft
from pathlib import Path
import time

from . import store, merge, vis, utils as u, types as t
from .types.collection import StoreError, DuplicateIdentifier, ReadOnlyError
from .store import ( StoreConf, Collections, Model, IntegrityViolation,
	ValidationFailed, OrphanPolicyViolation, LoaderConflict, Loader, filter_networks )
from .merge import MergeCollision


def calc_timer(func, *args, log=u.get_logger('tn.timer'), timer_name=None, **kws):
	if not timer_name:
		func_base = func if not isinstance(func, ft.partial) else func.func
		timer_name = '.'.join([func_base.__module__.strip('__'), func_base.__qualname__])
	log.debug('[{}] Starting...', timer_name)
	td = time.monotonic()
	data = func(*args, **kws)
	td = time.monotonic() - td
	log.debug('[{}] Finished in: {:.1f}s', timer_name, td)
	return data


def load_store(path, timer_func=None, log=u.get_logger('tn.init')):
	'''Load pickled Collections builder or Model from path.
		Raises StoreError if file contains anything else.'''
	store_load = u.pickle_load
	if timer_func: store_load = ft.partial(timer_func, store_load, timer_name='store_load')
	data = store_load(Path(path), fail=True)
	if not isinstance(data, (Collections, Model)):
		raise StoreError('Not a pickled transit network store: {} ({})'.format(
			path, data.__class__.__name__ ))
	log.debug('Loaded {!r} from: {}', data, path)
	return data

def dump_store(data, path, timer_func=None):
	store_dump = u.pickle_dump
	if timer_func: store_dump = ft.partial(timer_func, store_dump, timer_name='store_dump')
	store_dump(data, Path(path))
