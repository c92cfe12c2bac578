#!/usr/bin/env python3

import itertools as it, operator as op, functools as ft
from pathlib import Path
import os, sys

import tn_store as tn


def main(args=None):
	conf = tn.StoreConf()

	import argparse
	parser = argparse.ArgumentParser(
		description='Debugging tool for pickled transit network stores'
			' (Collections builders or validated Models).')

	group = parser.add_argument_group('Misc/debug options')
	group.add_argument('--conf', metavar='yaml-data',
		help='Override values for StoreConf as a YAML mapping.'
			' Example: {relation_workers: 4, log_violations_max: 100}')
	group.add_argument('--dot-for-relations', metavar='path',
		help='Dump record kind/reference graph (in graphviz dot format)'
			' to a specified file and exit. Record counts are added, if store path is specified.')
	group.add_argument('--dot-opts', metavar='yaml-data',
		help='Options for graphviz graph/nodes/edges to use with'
			' --dot-for-relations, as a YAML mappings. Example: {graph: {rankdir: TB}}')
	group.add_argument('--debug', action='store_true', help='Verbose operation mode.')

	cmds = parser.add_subparsers(title='Commands', dest='call')


	cmd = cmds.add_parser('stats', help='Print number of records in each collection.')
	cmd.add_argument('path', nargs='?', help='Pickled store file.')


	cmd = cmds.add_parser('validate',
		help='Check referential integrity of a pickled store, print all violations.')
	cmd.add_argument('path', help='Pickled store file.')
	cmd.add_argument('-s', '--sanitize', action='store_true',
		help='Prune orphans and unused records before validation.')
	cmd.add_argument('-o', '--output', metavar='path',
		help='Store validated model (pickled) to specified file.')


	cmd = cmds.add_parser('merge', help='Merge validated models into one.')
	cmd.add_argument('output', help='Path to store merged pickled model to.')
	cmd.add_argument('inputs', nargs='+', metavar='path[:tag]',
		help='Pickled model files, each with an optional'
			' source tag to prefix all its identifiers with, after colon.')


	cmd = cmds.add_parser('filter', help='Extract or remove specified networks from model.')
	cmd.add_argument('input', help='Pickled model file.')
	cmd.add_argument('output', help='Path to store filtered pickled model to.')
	group = cmd.add_mutually_exclusive_group(required=True)
	group.add_argument('-e', '--extract', nargs='+', metavar='network_id',
		help='Network ids to only keep in the model.')
	group.add_argument('-r', '--remove', nargs='+', metavar='network_id',
		help='Network ids to remove from the model.')


	cmd = cmds.add_parser('corresponding',
		help='Print ids of records related to specified one via relation graph.')
	cmd.add_argument('path', help='Pickled model file.')
	cmd.add_argument('from_kind', help='Collection to lookup records in. Example: stop_areas')
	cmd.add_argument('ids', help='Record id(s), comma-separated. Example: GDL,NAT')
	cmd.add_argument('to_kind', help='Collection of related records to print. Example: lines')


	opts = parser.parse_args(sys.argv[1:] if args is None else args)

	tn.u.logging.basicConfig(
		format='%(asctime)s :: %(name)s %(levelname)s :: %(message)s',
		datefmt='%Y-%m-%d %H:%M:%S',
		level=tn.u.logging.DEBUG if opts.debug else tn.u.logging.WARNING )
	log = tn.u.get_logger('tn.main')

	if opts.conf:
		import yaml
		for k, v in yaml.safe_load(opts.conf).items():
			if not hasattr(conf, k):
				parser.error('Unrecognized store conf option: {!r} (value: {!r})'.format(k, v))
			setattr(conf, k, v)

	load = lambda path: tn.load_store(path, timer_func=tn.calc_timer)
	dump = lambda data, path: tn.dump_store(data, path, timer_func=tn.calc_timer)
	def load_model(path):
		data = load(path)
		if not isinstance(data, tn.Model):
			parser.error('Validated model is required, not builder: {}'.format(path))
		data.conf = conf
		return data

	if opts.dot_for_relations:
		dot_opts = dict()
		if opts.dot_opts:
			import yaml
			dot_opts = yaml.safe_load(opts.dot_opts)
		store = load(opts.path) if getattr(opts, 'path', None) else None
		with tn.u.safe_replacement(opts.dot_for_relations) as dst:
			tn.vis.dot_for_relations(dst, store, dot_opts=dot_opts)
		return

	if not opts.call: parser.error('Command must be specified')

	elif opts.call == 'stats':
		if not opts.path: parser.error('Store path must be specified')
		data = load(opts.path)
		print('{} ({})'.format(opts.path, data.__class__.__name__))
		for name, n in data.stats().items(): print('  {}: {:,}'.format(name, n))

	elif opts.call == 'validate':
		data = load(opts.path)
		if isinstance(data, tn.Model): data = data.builder()
		data.conf = conf
		try:
			if opts.sanitize: data.sanitize()
			model = data.validate(timer_func=tn.calc_timer)
		except tn.ValidationFailed as err:
			for v in err.violations: print(v)
			return 1
		except tn.OrphanPolicyViolation as err:
			for v in err.orphans: print('orphan: {}'.format(v))
			return 1
		log.debug('Validated model: {}', model.stats_line())
		if opts.output: dump(model, opts.output)

	elif opts.call == 'merge':
		models, tags = list(), list()
		for spec in opts.inputs:
			path, tag = spec, None
			if not os.path.exists(path) and ':' in spec: path, tag = spec.rsplit(':', 1)
			models.append(load_model(path))
			tags.append(tag or None)
		try: model = tn.merge.merge(models, tags, conf=conf, timer_func=tn.calc_timer)
		except tn.ValidationFailed as err:
			for v in err.violations: print(v)
			return 1
		dump(model, opts.output)

	elif opts.call == 'filter':
		action, network_ids = ('extract', opts.extract) if opts.extract else ('remove', opts.remove)
		model = tn.filter_networks(load_model(opts.input),
			action, network_ids, timer_func=tn.calc_timer )
		dump(model, opts.output)

	elif opts.call == 'corresponding':
		model = load_model(opts.path)
		ids = list(filter(None, map(str.strip, opts.ids.split(','))))
		for ident in model.corresponding(opts.from_kind, ids, opts.to_kind): print(ident)

	else: parser.error('Action not implemented: {}'.format(opts.call))

if __name__ == '__main__': sys.exit(main())
