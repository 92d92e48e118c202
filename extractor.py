#!/usr/bin/env python3

'''
this script reads in an assembly listing of a function (objdump -d output or
a gcc -S listing) and prints the immediate hex constants used by its
instructions, one per line

example of the kind of listing it expects (first lines are headers):

	.file	"test.c"
	.text
	.globl	main
	.type	main, @function
main:
.LFB0:
	.cfi_startproc
	pushq	%rbp
	movq	%rsp, %rbp
	movl	$0x1A2B, -4(%rbp)
	...
	.size	main, .-main

the default (legacy) mode takes whatever sits between '$0x' and the next space
on the line and keeps only 0-9 and A-F. the tokens mode parses the operand
list properly and also understands decimal immediates.
'''

import sys
import re
import getopt
from enum import Enum


VERBOSE = False

# first lines of a listing are headers, never operands
HEADER_LINES = 10
MODE = 'legacy'
MODES = ('legacy', 'tokens')

MARKER = '$'
# '$0x' in front of the hex payload
PREFIX_LEN = 3
SIZE_DIRECTIVE = '.size'
HEXDIGITS = '0123456789ABCDEF'


def debug(*args, **kwargs):
	if VERBOSE:
		print(*args, file=sys.stderr, **kwargs)

def elog(*args, **kwargs):
	print(*args, file=sys.stderr, **kwargs)

def usage():
	print("Usage: %s [options] input_assembly_file function_name" % sys.argv[0])
	print('''
		arguments:
		-m mode		: extraction mode, legacy (default) or tokens
		-s		: only extract from the listing of function_name
		-k lines	: number of header lines to skip (default 10)
		-v		: verbose debugging messages

		''')


class OperandParseError(ValueError):
	'''
	an immediate operand on a line could not be turned into a constant
	'''

	def __init__(self, msg, lineno=None, line=None):
		super().__init__(msg)
		self.lineno = lineno
		self.line = line

	def __str__(self):
		if self.lineno is None:
			return self.args[0]
		return f"line {self.lineno}: {self.args[0]}: {self.line!r}"


def first_position(line: str, c: str) -> int:
	'''
	index of the first occurrence of c in line, -1 if absent
	'''
	return line.find(c)

def position_after(line: str, c: str, otherPos: int) -> int:
	'''
	index of the first occurrence of c strictly after otherPos, -1 if absent
	'''
	return line.find(c, max(otherPos + 1, 0))

def filter_hex(s: str) -> str:
	# lowercase hex digits are dropped too
	return ''.join(ch for ch in s if ch in HEXDIGITS)

def slice_operand(line: str, pos: int) -> str:
	'''
	cut the text between marker+3 and the first space after the marker
	'''
	posSpace = position_after(line, ' ', pos)
	if posSpace < 0:
		raise OperandParseError("no space after immediate operand")
	if posSpace < pos + PREFIX_LEN:
		raise OperandParseError("immediate operand shorter than its prefix")
	return line[pos + PREFIX_LEN:posSpace]


############################ tokenizer

# objdump -d: "  401126:\t55                   \tpush   %rbp"
objdumpLineRe = re.compile(r'^\s*[0-9a-fA-F]+:\t(?:[0-9a-fA-F]{2} )+\s*\t?(.*)$')
labelRe = re.compile(r'^[.\w$@]+:$')
immediateRe = re.compile(r'^\$(-?)(?:0[xX]([0-9a-fA-F]+)|([0-9]+))$')

# functions have to start with letters (not numbers), or _
gccFuncRe = re.compile(r'^([a-zA-Z_][\w.$]*):\s*$')
objdumpFuncRe = re.compile(r'^[0-9a-fA-F]+ <(.+)>:\s*$')

PREFIXES = ('rep', 'repz', 'repe', 'repnz', 'repne', 'lock', 'notrack', 'bnd', 'data16')


def split_operands(text: str) -> list:
	'''
	split an AT&T operand list on commas that are not inside parentheses,
	e.g. "$0x10,-0x8(%rbp,%rax,4)" -> ["$0x10", "-0x8(%rbp,%rax,4)"]
	'''
	operands = []
	depth = 0
	current = ''
	for ch in text:
		if ch == '(':
			depth += 1
		elif ch == ')':
			depth -= 1
		if ch == ',' and depth == 0:
			operands.append(current.strip())
			current = ''
			continue
		current += ch
	if current.strip():
		operands.append(current.strip())
	return operands

def tokenize(line: str):
	'''
	takes a listing line and returns (mnemonic, [operands]), or None when the
	line is not an instruction (blank, label, directive, comment)
	'''
	if objdumpFuncRe.match(line):
		return None
	m = objdumpLineRe.match(line)
	if m:
		line = m.group(1)

	# '#' starts a comment in both gcc and objdump output
	line = line.split('#', 1)[0].strip()
	if not line:
		return None
	if labelRe.match(line) or line.startswith('.'):
		return None

	words = line.split(None, 1)
	mnemonic = words[0]
	rest = words[1] if len(words) > 1 else ''

	while mnemonic in PREFIXES and rest:
		words = rest.split(None, 1)
		mnemonic = f"{mnemonic} {words[0]}"
		rest = words[1] if len(words) > 1 else ''

	# drop objdump symbol annotations like "401126 <foo>"
	rest = re.sub(r'\s*<[^>]*>', '', rest)
	return mnemonic, split_operands(rest)

def immediate_value(operand: str):
	'''
	uppercase hex value of an immediate operand ('$0x1a2b' -> '1A2B',
	'$10' -> 'A', '$-16' -> '-10'). returns None for symbolic immediates
	such as '$.LC0' and raises OperandParseError on malformed numbers
	'''
	m = immediateRe.match(operand)
	if m:
		sign, hexPart, decPart = m.groups()
		if hexPart is not None:
			value = int(hexPart, 16)
		else:
			value = int(decPart)
		return sign + format(value, 'X')

	body = operand[1:].lstrip('-')
	if body[:1].isdigit():
		raise OperandParseError(f"malformed immediate {operand}")
	return None


############################ function scope

class ScopeState(Enum):
	SEARCHING = 'searching'
	INSIDE = 'inside'
	DONE = 'done'


class FunctionScope:
	'''
	tracks where the listing of one function starts and ends

	searching -> inside on "name:" or "0000000000401126 <name>:"
	inside -> done on the .size line (which still gets extracted), or on the
	label of another function (which does not)
	'''

	def __init__(self, funcName: str):
		self.funcName = funcName
		self.state = ScopeState.SEARCHING

	def function_label(self, line: str):
		m = gccFuncRe.match(line) or objdumpFuncRe.match(line)
		if m:
			return m.group(1)
		return None

	def feed(self, line: str) -> bool:
		'''
		advance the state machine by one line, return True when the line
		belongs to the function body
		'''
		if self.state == ScopeState.SEARCHING:
			if self.function_label(line) == self.funcName:
				debug(f"entering {self.funcName}")
				self.state = ScopeState.INSIDE
			return False

		if self.state == ScopeState.INSIDE:
			label = self.function_label(line)
			if label is not None and label != self.funcName:
				debug(f"reached {label}, leaving {self.funcName}")
				self.state = ScopeState.DONE
				return False
			if SIZE_DIRECTIVE in line:
				self.state = ScopeState.DONE
			return True

		return False

	@property
	def done(self) -> bool:
		return self.state == ScopeState.DONE


############################ scanning

def legacy_constants(line: str, lineno: int) -> list:
	pos = first_position(line, MARKER)
	if pos < 0:
		return []
	try:
		return [filter_hex(slice_operand(line, pos))]
	except OperandParseError as e:
		e.lineno, e.line = lineno, line
		raise

def token_constants(line: str, lineno: int) -> list:
	parsed = tokenize(line)
	if parsed is None:
		return []
	mnemonic, operands = parsed

	res = []
	for op in operands:
		if not op.startswith(MARKER):
			continue
		try:
			value = immediate_value(op)
		except OperandParseError as e:
			e.lineno, e.line = lineno, line
			raise
		if value is None:
			debug(f"line {lineno}: skipping symbolic immediate {op} of {mnemonic}")
			continue
		res.append(value)
	return res

EXTRACTORS = {'legacy': legacy_constants, 'tokens': token_constants}


def scan_lines(lines, funcName=None, mode=MODE, scoped=False, headerLines=HEADER_LINES):
	'''
	generator over the constants found in an iterable of listing lines, in
	line order. stops after the first .size line (or when the scoped
	function ends). lines that fail to parse are reported and skipped
	'''
	if mode not in EXTRACTORS:
		raise ValueError(f"unknown mode {mode}, expected one of {', '.join(MODES)}")
	extract = EXTRACTORS[mode]

	scope = None
	if scoped:
		if not funcName:
			raise ValueError("scoped extraction needs a function name")
		scope = FunctionScope(funcName)

	count = 0
	for line in lines:
		count += 1
		line = line.rstrip('\r\n')

		if scope is not None:
			inside = scope.feed(line)
		else:
			inside = True

		if inside and count > headerLines:
			try:
				yield from extract(line, count)
			except OperandParseError as e:
				elog(f"parse error: {e}")

		if scope is not None:
			if scope.done:
				break
		elif SIZE_DIRECTIVE in line:
			break

	debug(f"read {count} lines")

def extract_constants(filepath, funcName=None, mode=MODE, scoped=False, headerLines=HEADER_LINES, echo=False) -> list:
	'''
	extract the constants of a listing file into a list, optionally printing
	each one as it is found. raises OSError when the file cannot be opened
	'''
	with open(filepath, 'r', errors='replace') as f:
		debug(f"[extract_constants] scanning {filepath} for {funcName}")
		return collect(f, funcName, mode, scoped, headerLines, echo)

def collect(f, funcName, mode, scoped, headerLines, echo) -> list:
	constants = []
	for const in scan_lines(f, funcName, mode=mode, scoped=scoped, headerLines=headerLines):
		if echo:
			print(const)
		constants.append(const)
	return constants

def extractor(fileName, funcName, mode=MODE, scoped=False, headerLines=HEADER_LINES) -> list:
	'''
	command line driver: print the constants of fileName, exit(-1) when it
	cannot be opened
	'''
	try:
		f = open(fileName, 'r', errors='replace')
	except OSError as e:
		elog("Unable to open objdump input file")
		debug(e)
		sys.exit(-1)

	with f:
		return collect(f, funcName, mode, scoped, headerLines, echo=True)


def main(argv=None):
	global VERBOSE

	if argv is None:
		argv = sys.argv

	mode = MODE
	scoped = False
	headerLines = HEADER_LINES

	try:
		opts, args = getopt.gnu_getopt(argv[1:], 'hvsm:k:')
	except getopt.GetoptError as e:
		elog(e)
		usage()
		sys.exit(1)

	for o, a in opts:
		if o == '-h':
			usage()
			sys.exit(0)
		elif o == '-v':
			VERBOSE = True
		elif o == '-s':
			scoped = True
		elif o == '-m':
			if a not in MODES:
				elog(f"unknown mode {a}")
				usage()
				sys.exit(1)
			mode = a
		elif o == '-k':
			try:
				headerLines = int(a)
			except ValueError:
				elog(f"-k needs a number, got {a}")
				usage()
				sys.exit(1)

	if len(args) != 2:
		usage()
		sys.exit(1)

	fileName, funcName = args
	extractor(fileName, funcName, mode=mode, scoped=scoped, headerLines=headerLines)
	return 0


if __name__ == '__main__':
	sys.exit(main())
