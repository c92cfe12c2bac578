import itertools as it, operator as op, functools as ft
from collections import ChainMap, OrderedDict
from collections.abc import Mapping
from pathlib import Path
import os, sys, types, re

import yaml # PyYAML module is required for tests

path_project = Path(__file__).parent.parent
sys.path.insert(1, str(path_project))
import tn_store as tn

verbose = os.environ.get('TN_DEBUG')
if verbose:
	tn.u.logging.basicConfig(
		format='%(asctime)s :: %(name)s %(levelname)s :: %(message)s',
		datefmt='%Y-%m-%d %H:%M:%S', level=tn.u.logging.DEBUG )



class dmap(ChainMap):

	maps = None

	def __init__(self, *maps, **map0):
		maps = list((v if not isinstance( v,
			(types.GeneratorType, list, tuple) ) else OrderedDict(v)) for v in maps)
		if map0 or not maps: maps = [map0] + maps
		super(dmap, self).__init__(*maps)

	def __repr__(self):
		return '<{} {:x} {}>'.format(
			self.__class__.__name__, id(self), repr(self._asdict()) )

	def _asdict(self):
		items = dict()
		for k, v in self.items():
			if isinstance(v, self.__class__): v = v._asdict()
			items[k] = v
		return items

	def _set_attr(self, k, v):
		self.__dict__[k] = v

	def __iter__(self):
		key_set = dict.fromkeys(set().union(*self.maps), True)
		return filter(lambda k: key_set.pop(k, False), it.chain.from_iterable(self.maps))

	def __getitem__(self, k):
		k_maps = list()
		for m in self.maps:
			if k in m:
				if isinstance(m[k], Mapping): k_maps.append(m[k])
				elif not (m[k] is None and k_maps): return m[k]
		if not k_maps: raise KeyError(k)
		return self.__class__(*k_maps)

	def __getattr__(self, k):
		try: return self[k]
		except KeyError: raise AttributeError(k)

	def __setattr__(self, k, v):
		for m in map(op.attrgetter('__dict__'), [self] + self.__class__.mro()):
			if k in m:
				self._set_attr(k, v)
				break
		else: self[k] = v

	def __delitem__(self, k):
		for m in self.maps:
			if k in m: del m[k]


def yaml_load(stream, dict_cls=OrderedDict, loader_cls=yaml.SafeLoader):
	if not hasattr(yaml_load, '_cls'):
		class CustomLoader(loader_cls): pass
		def construct_mapping(loader, node):
			loader.flatten_mapping(node)
			return dict_cls(loader.construct_pairs(node))
		CustomLoader.add_constructor(
			yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG, construct_mapping )
		# Do not auto-resolve dates/timestamps and HH:MM times, as PyYAML does that badly
		res_map = CustomLoader.yaml_implicit_resolvers = CustomLoader.yaml_implicit_resolvers.copy()
		res_int = list('-+0123456789')
		for c in res_int: del res_map[c]
		CustomLoader.add_implicit_resolver(
			'tag:yaml.org,2002:int',
			re.compile(r'''^(?:[-+]?0b[0-1_]+
				|[-+]?0[0-7_]+
				|[-+]?(?:0|[1-9][0-9_]*)
				|[-+]?0x[0-9a-fA-F_]+)$''', re.X), res_int )
		yaml_load._cls = CustomLoader
	return yaml.load(stream, yaml_load._cls)

def load_test_data(path_dir, path_stem, name):
	'Load test data from specified YAML file and return as dmap object.'
	with (path_dir / '{}.test.{}.yaml'.format(path_stem, name)).open() as src:
		return dmap(yaml_load(src))


def struct_from_val(val, cls, as_tuple=False):
	if isinstance(val, (tuple, list)): val = cls(*val)
	elif isinstance(val, (dmap, dict, OrderedDict)): val = cls(**val)
	else: raise ValueError(val)
	return val if not as_tuple else tn.u.attr.astuple(val)

@tn.u.attr_struct
class TestStopTime:
	stop_point_id = tn.u.attr_init()
	arrival_time = tn.u.attr_init()
	departure_time = tn.u.attr_init(None)

@tn.u.attr_struct
class TestCorresponding: keys = 'from_kind ids to_kind result'



def record_from_val(kind, val):
	'Create record of specified kind from YAML mapping, parsing dates/times where needed.'
	val = dict(val)
	if kind.name == 'calendars':
		val['dates'] = list(map(tn.u.date_parse, val.get('dates') or list()))
	elif kind.name == 'trips':
		stop_times = list()
		for n, st in enumerate(val.get('stop_times') or list()):
			stop_id, dts_arr, dts_dep = struct_from_val(st, TestStopTime, as_tuple=True)
			if dts_dep is None: dts_dep = dts_arr
			dts_arr, dts_dep = map(tn.u.dts_parse, [dts_arr, dts_dep])
			stop_times.append(tn.t.records.StopTime(stop_id, n, dts_arr, dts_dep))
		val['stop_times'] = stop_times
	elif kind.name == 'frequencies':
		for k in 'start_time', 'end_time': val[k] = tn.u.dts_parse(val[k])
	return kind.record(**val)

def collections_from_data(data, builder=None):
	'Populate (new, if not passed) Collections builder from YAML data.'
	if builder is None: builder = tn.Collections()
	colls = data.get('collections') or dict()
	for kind in tn.t.records.KINDS:
		coll = builder.collection(kind.name)
		for val in colls.get(kind.name) or list(): coll.push(record_from_val(kind, val))
	for k, v in (data.get('feed_infos') or dict()).items(): builder.feed_infos[k] = v
	return builder


class NetworkFixture:

	def __init__(self, name='minimal', path_file=Path(__file__).parent / 'network.py'):
		self.data = load_test_data(path_file.parent, path_file.stem, name)

	def builder(self): return collections_from_data(self.data)
	def model(self, timer_func=tn.calc_timer):
		return self.builder().validate(timer_func=timer_func)

	@property
	def corresponding_checks(self):
		return list(struct_from_val(v, TestCorresponding) for v in self.data.corresponding)


class StoreAssertions:

	def __init__(self, test): self.test = test

	def ids(self, coll): return list(coll.ids())

	def resolved_refs(self, store):
		'''Kind -> set of hashable (identifier, resolved references) for keyed kinds
			or set of structural record keys for position-keyed ones.'''
		refs = dict()
		for kind, coll in store.collections():
			if kind.keyed:
				refs[kind.name] = set(
					(record.id, tuple((ref.field, tuple(ref.ids(record))) for ref in kind.refs))
					for record in coll )
			else: refs[kind.name] = set(map(tn.u.freeze, coll))
		return refs

	def assert_closure(self, model):
		for kind, coll in model.collections():
			for record in coll:
				for ref in kind.refs:
					target = ref.target_for(record)
					if target is None: continue
					for field, target_id in ref.values(record):
						if target_id is None and ref.optional: continue
						self.test.assertIn( target_id, model.collection(target),
							'{}.{} -> {}'.format(kind.name, field, target_id) )

	def assert_same_ids(self, store1, store2):
		for kind, coll in store1.collections():
			if not kind.keyed: continue
			self.test.assertEqual(
				sorted(coll.ids()), sorted(store2.collection(kind.name).ids()), kind.name )
