#!/usr/bin/env python3
r"""
hack_asm.py  –  Two-pass assembler for the Hack 16-bit computer
================================================================

Usage:
    python3 hack_asm.py [input.asm] [-o output.hack] [-l listing.lst]
                        [-D NAME[=VALUE] ...]
    python3 hack_asm.py a.asm b.asm ...      (writes a.hack, b.hack, ...)

    With no input file (or '-') the source is read from standard input.

Output:
    One line of 16 '0'/'1' characters per instruction, on stdout by default
    Listing file   (.lst)       optional symbol table plus address / word / source

Syntax:
    Address         @value  or  @symbol
    Computation     dest=comp;jump   (dest= and ;jump are both optional)
                    dest  any of A, D, M (each at most once)
                    comp  0 1 -1 D A M !D !A !M -D -A -M D+1 A+1 M+1
                          D-1 A-1 M-1 D+A D+M D-A D-M A-D M-D D&A D&M D|A D|M
                    jump  JGT JEQ JGE JLT JNE JLE JMP
    Labels          (NAME)  binds NAME to the address of the next instruction
    Variables       unknown @symbols get RAM addresses from 16 upwards
    Comments        // to end of line
    Predefined      SP LCL ARG THIS THAT R0..R15 SCREEN KBD
"""

import re
import os
import sys
import enum
import argparse

# ── Mnemonic tables ───────────────────────────────────────────────────────────

class Dest(enum.IntFlag):
    """Destination bits d1 d2 d3."""
    NONE = 0
    M = 0b001
    D = 0b010
    A = 0b100

DEST_LETTERS = ('A', 'D', 'M')


class Comp(enum.IntEnum):
    """Computation field: a c1 c2 c3 c4 c5 c6."""
    ZERO      = 0b0101010
    ONE       = 0b0111111
    NEG_ONE   = 0b0111010
    D         = 0b0001100
    A         = 0b0110000
    NOT_D     = 0b0001101
    NOT_A     = 0b0110001
    NEG_D     = 0b0001111
    NEG_A     = 0b0110011
    INC_D     = 0b0011111
    INC_A     = 0b0110111
    DEC_D     = 0b0001110
    DEC_A     = 0b0110010
    D_PLUS_A  = 0b0000010
    D_MINUS_A = 0b0010011
    A_MINUS_D = 0b0000111
    D_AND_A   = 0b0000000
    D_OR_A    = 0b0010101
    M         = 0b1110000
    NOT_M     = 0b1110001
    NEG_M     = 0b1110011
    INC_M     = 0b1110111
    DEC_M     = 0b1110010
    D_PLUS_M  = 0b1000010
    D_MINUS_M = 0b1010011
    M_MINUS_D = 0b1000111
    D_AND_M   = 0b1000000
    D_OR_M    = 0b1010101

COMP_MNEMONICS = {
    '0':   Comp.ZERO,
    '1':   Comp.ONE,
    '-1':  Comp.NEG_ONE,
    'D':   Comp.D,
    'A':   Comp.A,
    '!D':  Comp.NOT_D,
    '!A':  Comp.NOT_A,
    '-D':  Comp.NEG_D,
    '-A':  Comp.NEG_A,
    'D+1': Comp.INC_D,
    'A+1': Comp.INC_A,
    'D-1': Comp.DEC_D,
    'A-1': Comp.DEC_A,
    'D+A': Comp.D_PLUS_A,
    'D-A': Comp.D_MINUS_A,
    'A-D': Comp.A_MINUS_D,
    'D&A': Comp.D_AND_A,
    'D|A': Comp.D_OR_A,
    'M':   Comp.M,
    '!M':  Comp.NOT_M,
    '-M':  Comp.NEG_M,
    'M+1': Comp.INC_M,
    'M-1': Comp.DEC_M,
    'D+M': Comp.D_PLUS_M,
    'D-M': Comp.D_MINUS_M,
    'M-D': Comp.M_MINUS_D,
    'D&M': Comp.D_AND_M,
    'D|M': Comp.D_OR_M,
}
COMP_NAMES = {comp: text for text, comp in COMP_MNEMONICS.items()}

# every Comp variant must be reachable from exactly one mnemonic
if set(COMP_NAMES) != set(Comp):
    raise RuntimeError('COMP_MNEMONICS is not exhaustive')


class Jump(enum.IntEnum):
    """Jump bits j1 j2 j3 (no jump encodes as 000)."""
    JGT = 0b001
    JEQ = 0b010
    JGE = 0b011
    JLT = 0b100
    JNE = 0b101
    JLE = 0b110
    JMP = 0b111


PREDEFINED_SYMBOLS = {
    'SP':     0x0000,
    'LCL':    0x0001,
    'ARG':    0x0002,
    'THIS':   0x0003,
    'THAT':   0x0004,
    'SCREEN': 0x4000,
    'KBD':    0x6000,
}
PREDEFINED_SYMBOLS.update({f'R{n}': n for n in range(16)})

VARIABLE_BASE = 16
SCREEN        = PREDEFINED_SYMBOLS['SCREEN']
MAX_ADDRESS   = 0x7FFF      # 15-bit address field

# ── Error / warning helpers ───────────────────────────────────────────────────

class AsmError(Exception):
    def __init__(self, msg, filename=None, lineno=None):
        super().__init__(msg)
        self.msg      = msg
        self.filename = filename
        self.lineno   = lineno
    def __str__(self):
        loc = ''
        if self.filename:
            loc = f'{self.filename}'
        if self.lineno is not None:
            loc += f':{self.lineno}' if loc else f'line {self.lineno}'
        return f'Error ({loc}): {self.msg}' if loc else f'Error: {self.msg}'


class AsmSyntaxError(AsmError):
    """Malformed source line."""


class DuplicateSymbolError(AsmError):
    """A symbol bound a second time."""


def warn(msg, filename=None, lineno=None):
    """Print a warning to stderr and return the formatted text."""
    loc = ''
    if filename:
        loc = f'{filename}'
    if lineno is not None:
        loc += f':{lineno}' if loc else f'line {lineno}'
    w = f'Warning ({loc}): {msg}' if loc else f'Warning: {msg}'
    print(w, file=sys.stderr)
    return w

# ── Instruction records ───────────────────────────────────────────────────────

class AInstruction:
    __slots__ = ('symbol', 'lineno', 'raw')
    def __init__(self, symbol, lineno=None, raw=''):
        self.symbol = symbol
        self.lineno = lineno
        self.raw    = raw
    def __str__(self):
        return f'@{self.symbol}'
    def __repr__(self):
        return f'AInstruction({self.symbol!r})'


class CInstruction:
    __slots__ = ('dest', 'comp', 'jump', 'lineno', 'raw')
    def __init__(self, dest, comp, jump=None, lineno=None, raw=''):
        self.dest   = dest      # Dest (possibly Dest.NONE)
        self.comp   = comp      # Comp
        self.jump   = jump      # Jump or None
        self.lineno = lineno
        self.raw    = raw
    def __str__(self):
        text = COMP_NAMES[self.comp]
        if self.dest:
            letters = ''.join(letter for letter in 'AMD'
                              if self.dest & Dest[letter])
            text = f'{letters}={text}'
        if self.jump is not None:
            text += f';{self.jump.name}'
        return text
    def __repr__(self):
        return f'CInstruction({str(self)!r})'


class LInstruction:
    __slots__ = ('symbol', 'lineno', 'raw')
    def __init__(self, symbol, lineno=None, raw=''):
        self.symbol = symbol
        self.lineno = lineno
        self.raw    = raw
    def __str__(self):
        return f'({self.symbol})'
    def __repr__(self):
        return f'LInstruction({self.symbol!r})'

# ── Line parser ───────────────────────────────────────────────────────────────

def strip_comment(line):
    """Remove a // comment."""
    i = line.find('//')
    return line if i < 0 else line[:i]

def _check_symbol(symbol, empty_msg, filename, lineno):
    if not symbol:
        raise AsmSyntaxError(empty_msg, filename, lineno)
    if re.search(r'\s', symbol):
        raise AsmSyntaxError('invalid label name', filename, lineno)
    return symbol

def parse_dest(text, filename=None, lineno=None):
    """Parse the part left of '=' into a Dest bit-set."""
    dest = Dest.NONE
    text = text.strip()
    for letter in DEST_LETTERS:
        count = text.count(letter)
        if count > 1:
            raise AsmSyntaxError(f'destination {letter} specified multiple times',
                                 filename, lineno)
        if count == 1:
            dest |= Dest[letter]
        text = text.replace(letter, '')
    if text:
        raise AsmSyntaxError('unknown destination type specified', filename, lineno)
    return dest

def parse_computation(text, filename=None, lineno=None, raw=''):
    """Parse 'dest=comp;jump' into a CInstruction."""
    dest = Dest.NONE
    jump = None
    comp_from_dest = None
    comp_from_jump = None
    body = text

    if '=' in text:
        dest_text, body = text.split('=', 1)
        dest = parse_dest(dest_text, filename, lineno)
        comp_from_dest = body.split(';', 1)[0].strip()

    if ';' in body:
        head, jump_text = body.split(';', 1)
        # the computation is whatever follows the last '=' before the jump
        comp_from_jump = head.rsplit('=', 1)[-1].strip()
        if comp_from_dest is not None and comp_from_dest != comp_from_jump:
            raise AsmSyntaxError('unable to determine computation', filename, lineno)
        jump = Jump.__members__.get(jump_text.strip())
        if jump is None:
            raise AsmSyntaxError('invalid jump type', filename, lineno)

    if comp_from_jump is not None:
        comp_text = comp_from_jump
    elif comp_from_dest is not None:
        comp_text = comp_from_dest
    else:
        comp_text = body.strip()

    comp = COMP_MNEMONICS.get(comp_text)
    if comp is None:
        raise AsmSyntaxError(f"invalid computation '{comp_text}'", filename, lineno)
    return CInstruction(dest, comp, jump, lineno, raw)

def parse_line(raw, lineno=None, filename=None):
    """
    Parse one source line.  Returns an AInstruction, CInstruction or
    LInstruction, or None for blank / comment-only lines.
    """
    line = strip_comment(raw).strip()
    if not line:
        return None

    if line.startswith('@'):
        symbol = _check_symbol(line[1:].strip(), 'address or label name expected',
                               filename, lineno)
        return AInstruction(symbol, lineno, line)

    if line.startswith('('):
        end = line.find(')')
        if end < 0:
            raise AsmSyntaxError("closing ')' expected", filename, lineno)
        symbol = _check_symbol(line[1:end].strip(), 'label name expected',
                               filename, lineno)
        return LInstruction(symbol, lineno, line)

    return parse_computation(line, filename, lineno, line)

def parse_lines(lines, filename=None):
    """Lazily parse an iterable of source lines, numbering them from 1."""
    for lineno, raw in enumerate(lines, 1):
        instr = parse_line(raw, lineno, filename)
        if instr is not None:
            yield instr

# ── Symbol table ──────────────────────────────────────────────────────────────

class SymbolTable:
    def __init__(self, predefined=None, first_variable=VARIABLE_BASE):
        self._symbols      = dict(PREDEFINED_SYMBOLS)
        self.next_variable = first_variable
        self.warnings      = []            # this run only
        for name, value in (predefined or {}).items():
            self.define(name, value)
        self.frozen = set(self._symbols)   # never user-defined

    def __contains__(self, name):
        return name in self._symbols

    def __getitem__(self, name):
        return self._symbols[name]

    def __len__(self):
        return len(self._symbols)

    def __iter__(self):
        return iter(self._symbols)

    def items(self):
        return self._symbols.items()

    def define(self, name, address, filename=None, lineno=None):
        if not 0 <= address <= MAX_ADDRESS:
            raise AsmError(f"Symbol '{name}' value {address} out of 15-bit range",
                           filename, lineno)
        if name in self._symbols:
            raise DuplicateSymbolError(f"Symbol '{name}' already defined",
                                       filename, lineno)
        self._symbols[name] = address
        return address

    def allocate(self, name, filename=None, lineno=None):
        """Bind a new variable to the next free RAM address."""
        address = self.next_variable
        if address > MAX_ADDRESS:
            raise AsmError(f"No address left for variable '{name}'", filename, lineno)
        if address >= SCREEN:
            self.warnings.append(warn(
                f"variable '{name}' allocated at {address}, inside memory-mapped I/O",
                filename, lineno))
        self.define(name, address, filename, lineno)
        self.next_variable += 1
        return address

# ── Pass 1: bind labels ───────────────────────────────────────────────────────

def pass1(instructions, symbols, filename=None):
    """
    First pass: bind every label to the address of the next real instruction.
    Returns the list of A/C instructions in program order.
    """
    emittable = []
    pc        = 0
    for instr in instructions:
        if isinstance(instr, LInstruction):
            symbols.define(instr.symbol, pc, filename, instr.lineno)
        else:
            emittable.append(instr)
            pc += 1
    return emittable

# ── Pass 2: encode ────────────────────────────────────────────────────────────

def resolve_address(instr, symbols, filename=None):
    symbol = instr.symbol
    if re.fullmatch(r'[0-9]+', symbol):
        value = int(symbol)
        if value > MAX_ADDRESS:
            raise AsmSyntaxError(f'address {value} out of 15-bit range',
                                 filename, instr.lineno)
        return value
    if symbol in symbols:
        return symbols[symbol]
    return symbols.allocate(symbol, filename, instr.lineno)

def encode_a(instr, symbols, filename=None):
    """Encode @value as 0 followed by a 15-bit address."""
    return f'0{resolve_address(instr, symbols, filename):015b}'

def encode_c(instr):
    """Encode dest=comp;jump as 111 a cccccc ddd jjj."""
    jump = instr.jump if instr.jump is not None else 0
    return f'111{int(instr.comp):07b}{int(instr.dest):03b}{int(jump):03b}'

def pass2(instructions, symbols, filename=None):
    """
    Second pass: encode everything.
    Returns listing: [(address, word, instruction), ...]
    """
    listing = []
    for address, instr in enumerate(instructions):
        if isinstance(instr, AInstruction):
            word = encode_a(instr, symbols, filename)
        elif isinstance(instr, CInstruction):
            word = encode_c(instr)
        else:
            raise AsmError(f"Internal: cannot encode '{instr}'", filename, instr.lineno)
        listing.append((address, word, instr))
    return listing

# ── Translation run ───────────────────────────────────────────────────────────

class Assembler:
    """One translation run: owns the symbol table and both counters."""

    def __init__(self, predefined=None):
        self.symbols = SymbolTable(predefined)

    @property
    def warnings(self):
        return self.symbols.warnings

    def assemble(self, lines, filename=None):
        instructions = list(parse_lines(lines, filename))
        emittable    = pass1(instructions, self.symbols, filename)
        return pass2(emittable, self.symbols, filename)

def assemble_source(text, predefined=None, filename=None):
    """Assemble a source string, return the list of 16-bit words."""
    listing = Assembler(predefined).assemble(text.splitlines(), filename)
    return [word for _, word, _ in listing]

# ── Output writers ────────────────────────────────────────────────────────────

def write_words(listing, fh):
    for _, word, _ in listing:
        fh.write(word + '\n')

def write_listing(listing, symbols, out_path, src_path):
    """Write annotated listing file."""
    lines = []
    lines.append('// Hack Assembler listing')
    lines.append(f'// Source: {src_path}')
    lines.append('')

    user = sorted((n, v) for n, v in symbols.items() if n not in symbols.frozen)
    if user:
        lines.append('// Symbols:')
        for name, val in user:
            lines.append(f'//   {name:<24} = {val:5d}  (0x{val:04X})')
        lines.append('')

    lines.append(f'{"Addr":>6}  {"Word":<16}  Source')
    lines.append('-' * 72)

    for addr, word, instr in listing:
        lines.append(f'  {addr:04X}  {word}  {instr}')

    with open(out_path, 'w') as fh:
        fh.write('\n'.join(lines) + '\n')

# ── Main ──────────────────────────────────────────────────────────────────────

def parse_defines(defines):
    predefines = {}
    for d in defines:
        if '=' in d:
            k, v = d.split('=', 1)
            predefines[k.strip()] = int(v, 0)
        else:
            predefines[d.strip()] = 1
    return predefines

def assemble_path(path, predefines):
    """Assemble one source path ('-' for stdin).  Returns (assembler, listing)."""
    asm = Assembler(predefines)
    if path == '-':
        return asm, asm.assemble(sys.stdin)
    with open(path, 'r', encoding='utf-8') as fh:
        return asm, asm.assemble(fh, path)

def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Hack 16-bit computer assembler',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__)
    parser.add_argument('inputs', nargs='*', default=['-'], metavar='input',
                        help="Assembly source file(s) (default: '-' for stdin); "
                             "with several files each gets a .hack beside it")
    parser.add_argument('-o', '--output',  help='Output .hack file (default: stdout)')
    parser.add_argument('-l', '--listing', help='Listing file (default: none)')
    parser.add_argument('-D', '--define',  action='append', default=[],
                        metavar='NAME[=VALUE]',
                        help='Pre-define a symbol (may be repeated)')
    args = parser.parse_args(argv)

    try:
        predefines = parse_defines(args.define)
    except ValueError as e:
        parser.error(f'bad -D value: {e}')

    batch = len(args.inputs) > 1
    if batch and (args.output or args.listing):
        parser.error('-o and -l take a single input file')
    if batch and '-' in args.inputs:
        parser.error("'-' cannot be combined with other input files")

    warning_count = 0
    try:
        for path in args.inputs:
            asm, listing = assemble_path(path, predefines)
            warning_count += len(asm.warnings)

            out_path = args.output
            if batch:
                out_path = os.path.splitext(path)[0] + '.hack'
            if out_path:
                with open(out_path, 'w') as fh:
                    write_words(listing, fh)
                print(f'Wrote {len(listing)} words to {out_path}', file=sys.stderr)
            else:
                write_words(listing, sys.stdout)

            if args.listing:
                src_name = '<stdin>' if path == '-' else path
                write_listing(listing, asm.symbols, args.listing, src_name)
                print(f'Wrote listing to {args.listing}', file=sys.stderr)

        if warning_count:
            print(f'{warning_count} warning(s).', file=sys.stderr)

    except AsmError as e:
        print(str(e), file=sys.stderr)
        return 1
    except (OSError, UnicodeDecodeError) as e:
        print(f'Error: {e}', file=sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
