#!/usr/bin/env python3

'''
batch pipeline over a directory of assembly listings

	python -m pipeline.run [options] <action>

layout of the data directory:

	data/asm/*		listings (objdump -d or gcc -S output)
	data/db/constants.db	results

extract -> minhash -> compare/matches, each action reads what the previous one
stored in the db
'''

import sys
import getopt
from glob import glob
import sqlite3
import os
import time
import itertools
import statistics

from datasketch import MinHash, LeanMinHash

import extractor


VERBOSE = False # can be turned off via flags
THRESHOLD = 0.5

DATADIR = 'data' # in the current dir
DBNAME = 'constants.db'

MINHASH_PERMS = 64 # constant sets are small, no need for the default 128

ACTIONS = ('extract', 'minhash', 'compare', 'matches')

def debug(*args, **kwargs):
	if VERBOSE:
		print(*args, file=sys.stderr, **kwargs)

def elog(*args, **kwargs):
	print(*args, file=sys.stderr, **kwargs)

def usage():
	print("usage:\n%s [options] <action>" % sys.argv[0])
	print("action can be one of extract, minhash, compare, matches")
	print('''
		arguments:
		-f function_name	: function name(s) to extract or compare (comma separated)
		-m mode			: extraction mode, legacy (default) or tokens
		-p permutations		: number of permutations for minhash
		-d path/to/data		: path to data directory
		-t threshold		: minimum jaccard similarity reported by matches (e.g 0.5)
		-v			: verbose debugging messages

		''')


def connect(datadir=DATADIR):
	dbdir = os.path.join(datadir, "db")
	os.makedirs(dbdir, exist_ok=True)
	con = sqlite3.connect(os.path.join(dbdir, DBNAME))
	create_tables(con)
	return con

def create_tables(con):
	cur = con.cursor()
	cur.execute('''CREATE TABLE IF NOT EXISTS constant (filename VARCHAR, fname VARCHAR,
								idx INT, value VARCHAR,
								PRIMARY KEY(filename, fname, idx))''')
	cur.execute('''CREATE TABLE IF NOT EXISTS constminhash (filename VARCHAR, fname VARCHAR,
								numperms INT, hashvals VARCHAR,
								PRIMARY KEY (filename, fname, numperms))''')
	con.commit()


def extract_listing(filepath, funcNames=None, sqlite_con=None, mode=extractor.MODE) -> int:
	'''
	extract the constants of one listing, once per function name (scoped) or,
	without names, the whole listing under the file stem. optionally commit to
	the sqlite3 db, skipping rows that are already there. returns the number
	of constants found
	'''
	filename = os.path.basename(filepath)
	if funcNames:
		jobs = [(fname, True) for fname in funcNames]
	else:
		jobs = [(os.path.splitext(filename)[0], False)]

	count = 0
	skipCount = 0
	for fname, scoped in jobs:
		constants = extractor.extract_constants(filepath, fname, mode=mode, scoped=scoped)
		debug(f"{filename}:{fname} -> {constants}")
		count += len(constants)

		if sqlite_con is None:
			continue
		cur = sqlite_con.cursor()
		for idx, value in enumerate(constants):
			try:
				cur.execute("INSERT INTO constant(filename, fname, idx, value) values(?,?,?,?)",
					(filename, fname, idx, value))
			except sqlite3.IntegrityError: # already exists
				skipCount += 1
		sqlite_con.commit()

	if skipCount > 0:
		debug(f"skipped {skipCount} constants")
	return count

def extract_dir(datadir, con, funcNames=None, mode=extractor.MODE):
	fcount = 0
	ccount = 0
	for file in sorted(glob(os.path.join(datadir, "asm", "*"))):
		if not os.path.isfile(file):
			continue
		try:
			ccount += extract_listing(file, funcNames, sqlite_con=con, mode=mode)
		except OSError as e:
			elog(f"skipping {file}: {e}")
			continue
		fcount += 1
	return fcount, ccount


def function_constants(con) -> dict:
	'''
	<(filename, fname) : set of constants>
	'''
	res = {}
	rows = con.execute("SELECT filename, fname, value FROM constant")
	for filename, fname, value in rows:
		res.setdefault((filename, fname), set()).add(value)
	return res

def hash_constants(con, perms=MINHASH_PERMS):
	'''
	store a minhash of every function's constant set, returns (hashed, skipped)
	'''
	fnhashCount = 0
	fnSkipCount = 0

	cur = con.cursor()
	for (filename, fname), constants in function_constants(con).items():
		m = MinHash(num_perm=perms)
		for c in constants:
			m.update(c.encode('utf8'))

		lm = LeanMinHash(m)
		hashvals = ','.join(str(int(h)) for h in lm.hashvalues)
		try:
			cur.execute("INSERT INTO constminhash (filename, fname, numperms, hashvals) values(?,?,?,?)",
				(filename, fname, perms, hashvals))
			fnhashCount += 1
		except sqlite3.IntegrityError:
			fnSkipCount += 1
	con.commit()
	return fnhashCount, fnSkipCount

def load_minhashes(con, funcNames=None, perms=MINHASH_PERMS) -> dict:
	'''
	<(filename, fname) : MinHash>, optionally only for some function names
	'''
	res = {}
	if funcNames:
		rows = []
		for funcName in funcNames:
			rows.extend(con.execute("SELECT filename,fname,hashvals FROM constminhash WHERE fname LIKE ? AND numperms=?",
				(funcName, perms)))
	else:
		rows = con.execute("SELECT filename,fname,hashvals FROM constminhash WHERE numperms=?", (perms,))

	for filename, fname, hashvalStr in rows:
		hashvals = [int(i) for i in hashvalStr.split(',')]
		res[(filename, fname)] = MinHash(num_perm=perms, hashvalues=hashvals)
	return res

def compare_functions(con, funcNames=None, perms=MINHASH_PERMS) -> list:
	'''
	pairwise estimated jaccard similarity of the stored constant sets,
	as a list of (filefunc0, filefunc1, jaccard)
	'''
	hashobjs = load_minhashes(con, funcNames, perms)
	res = []
	for key0, key1 in itertools.combinations(sorted(hashobjs), 2):
		jaccardi = hashobjs[key0].jaccard(hashobjs[key1])
		res.append((":".join(key0), ":".join(key1), jaccardi))
	return res

def find_matches(con, threshold=THRESHOLD, perms=MINHASH_PERMS) -> list:
	return [r for r in compare_functions(con, perms=perms) if r[2] >= threshold]


def print_stats(scores):
	if len(scores) > 0:
		elog(f"min jaccard: {min(scores)}")
		elog(f"max jaccard: {max(scores)}")
		elog(f"median jaccard: {statistics.median(scores)}")
		elog(f"mean jaccard: {statistics.mean(scores)}")


def main(argv=None):
	global VERBOSE

	if argv is None:
		argv = sys.argv

	datadir = DATADIR
	perms = MINHASH_PERMS
	threshold = THRESHOLD
	mode = extractor.MODE
	funcNames = None

	try:
		opts, args = getopt.gnu_getopt(argv[1:], 'hvd:m:t:p:f:')
	except getopt.GetoptError as e:
		elog(e)
		usage()
		sys.exit(1)

	try:
		for o, a in opts:
			if o == '-h':
				usage()
				sys.exit(0)
			elif o == '-d':
				datadir = a
			elif o == '-p':
				perms = int(a)
			elif o == '-f':
				funcNames = [f for f in a.split(',') if f] or None
			elif o == '-m':
				if a not in extractor.MODES:
					raise ValueError(f"unknown mode {a}")
				mode = a
			elif o == '-v':
				VERBOSE = True
				extractor.VERBOSE = True
			elif o == '-t':
				threshold = float(a)
	except ValueError as e:
		elog(e)
		usage()
		sys.exit(1)

	if len(args) < 1 or args[0] not in ACTIONS:
		usage()
		sys.exit(1)
	action = args[0]

	start = time.time()
	con = connect(datadir)

	if action == 'extract':
		fcount, ccount = extract_dir(datadir, con, funcNames, mode)
		print(f"extract done, elapsed {time.time() - start}")
		print(f"extracted {ccount} constants from {fcount} listings")
		print(f"find the results in {os.path.join(datadir, 'db', DBNAME)}")

	elif action == 'minhash':
		fnhashCount, fnSkipCount = hash_constants(con, perms)
		elog(f"calculated {fnhashCount} hashes, skipped {fnSkipCount}")

	elif action == 'compare':
		if not funcNames:
			print("please specify function name(s) to compare in -f ")
			sys.exit(1)

		# print CSV header
		print('filefunc0,filefunc1,permutations,jaccard')
		scores = []
		for filefunc0, filefunc1, jaccardi in compare_functions(con, funcNames, perms):
			scores.append(jaccardi)
			print(f"{filefunc0},{filefunc1},{perms},{jaccardi}")
		print_stats(scores)

	elif action == 'matches':
		for filefunc0, filefunc1, jaccardi in find_matches(con, threshold, perms):
			print(f"{filefunc0},{filefunc1},{jaccardi}")

	con.close()
	elog(f"done, elapsed {time.time() - start} seconds")
	return 0


if __name__ == '__main__':
	sys.exit(main())
