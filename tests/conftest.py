"""
Shared listings for the extractor, pipeline and server tests.
"""

import pytest


GCC_LISTING = "\n".join([
    '\t.file\t"t.c"',
    '\t.text',
    '\t.globl\tfoo',
    '\t.type\tfoo, @function',
    'foo:',
    '.LFB0:',
    '\t.cfi_startproc',
    '\tpushq\t%rbp',
    '\tmovq\t%rsp, %rbp',
    '\tmovl\t$0x11 , %eax',
    '\tmovl\t$0x22 , %eax',
    '\tpopq\t%rbp',
    '\tret',
    '\t.cfi_endproc',
    '.LFE0:',
    '\t.size\tfoo, .-foo',
    '\t.globl\tmain',
    '\t.type\tmain, @function',
    'main:',
    '.LFB1:',
    '\tmovl\t$0x33 , -4(%rbp)',
    '\tmovl\t$0x44 , %eax',
    '\tret',
    '\t.size\tmain, .-main',
    '\t.ident\t"GCC"',
]) + "\n"

OBJDUMP_LISTING = "\n".join([
    '',
    't.o:     file format elf64-x86-64',
    '',
    '',
    'Disassembly of section .text:',
    '',
    '0000000000000000 <foo>:',
    '   0:\t55                   \tpush   %rbp',
    '   1:\t48 89 e5             \tmov    %rsp,%rbp',
    '   4:\tb8 2a 00 00 00       \tmov    $0x2a,%eax',
    '   9:\t5d                   \tpop    %rbp',
    '   a:\tc3                   \tret',
    '',
    '000000000000000b <main>:',
    '   b:\t55                   \tpush   %rbp',
    '   c:\tc7 45 fc 0a 00 00 00 \tmovl   $0xa,-0x4(%rbp)',
    '  13:\tb8 00 00 00 00       \tmov    $0x0,%eax',
    '  18:\t5d                   \tpop    %rbp',
    '  19:\tc3                   \tret',
]) + "\n"


def header(n=10, text="\t.text $0xFFFF $0xEEEE"):
    """Header lines that would qualify if they were not skipped."""
    return [text] * n


@pytest.fixture
def gcc_listing():
    return GCC_LISTING


@pytest.fixture
def objdump_listing():
    return OBJDUMP_LISTING


@pytest.fixture
def write_listing(tmp_path):
    """Write lines (or a text block) to a file and return its path."""
    def _write(content, name="listing.s"):
        if isinstance(content, list):
            content = "\n".join(content) + "\n"
        path = tmp_path / name
        path.write_text(content)
        return path
    return _write


@pytest.fixture
def make_header():
    return header
