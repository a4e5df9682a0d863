#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
RV64IM Two-Pass Assembler (Python 3)
------------------------------------
- Reads RV64I + M assembly and writes one 32-bit word per line as uppercase hex.
- Two passes: (1) binds labels to instruction indices (1-based, one per emitting line),
  (2) encodes each line into R/I/S/B/U/J words.
- Operands are whitespace-separated, commas are optional trailing characters.
- Immediates: 0x... hex, decimal, or a label (displacement target - current).
- No pseudo-instructions, no directives.

Usage:
    rv64asm program.asm program.hex [--byte-offsets] [--legacy] [-v]
"""

from __future__ import annotations
import argparse
import logging
import re
import sys
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

log = logging.getLogger(__name__)
log.addHandler(logging.NullHandler())

# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------
class AsmError(Exception):
    """Base class for every assembly failure.

    Low-level helpers raise without position; the passes fill in ``line``
    (1-based source line) and ``index`` (instruction index) on the way out.
    """

    def __init__(self, message: str, line: Optional[int] = None, index: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.line = line
        self.index = index

    def __str__(self):
        if self.line is None:
            return self.message
        if self.index is None:
            return f"Line {self.line}: {self.message}"
        return f"Line {self.line} (instruction {self.index}): {self.message}"

class BadRegister(AsmError):
    pass

class UnknownMnemonic(AsmError):
    pass

class BadOperands(AsmError):
    pass

class BadImmediate(AsmError):
    pass

class BadLabel(AsmError):
    pass

class AsmIOError(AsmError):
    pass

# -----------------------------------------------------------------------------
# Registers
# -----------------------------------------------------------------------------
REG_ALIASES: Dict[str, int] = {
    "zero": 0, "ra": 1, "sp": 2, "gp": 3, "tp": 4, "fp": 8,
}

# family -> (highest suffix, suffix -> index)
REG_FAMILIES = {
    "x": (31, lambda n: n),
    "t": (6,  lambda n: 5 + n if n < 3 else 25 + n),
    "s": (11, lambda n: 8 + n if n < 2 else 16 + n),
    "a": (7,  lambda n: 10 + n),
}

REG_RE = re.compile(r'^([a-z]+)([0-9]{1,2})$')
REG_OFFSETS = (7, 15, 20)

def parse_reg(tok: str) -> int:
    t = tok.strip().lower()
    if len(t) > 4:
        raise BadRegister(f"invalid register '{tok}' (too long)")
    if t in REG_ALIASES: return REG_ALIASES[t]
    m = REG_RE.match(t)
    if m and m.group(1) in REG_FAMILIES:
        top, to_index = REG_FAMILIES[m.group(1)]
        n = int(m.group(2))
        if n <= top: return to_index(n)
    raise BadRegister(f"invalid register '{tok}'")

def reg_field(tok: str, offset: int) -> int:
    """Register index shifted into the field starting at ``offset``."""
    if offset not in REG_OFFSETS:
        raise ValueError(f"register offset must be one of {REG_OFFSETS}, got {offset}")
    return parse_reg(tok) << offset

# -----------------------------------------------------------------------------
# Formats and mnemonic table (RV64I + M)
# -----------------------------------------------------------------------------
class Format(Enum):
    R = 'R'
    I = 'I'
    S = 'S'
    B = 'B'
    U = 'U'
    J = 'J'

OP_LOAD   = 0b0000011
OP_IMM    = 0b0010011
OP_AUIPC  = 0b0010111
OP_IMM_32 = 0b0011011
OP_STORE  = 0b0100011
OP_R      = 0b0110011
OP_LUI    = 0b0110111
OP_R_32   = 0b0111011
OP_BRANCH = 0b1100011
OP_JALR   = 0b1100111
OP_JAL    = 0b1101111

F7_ALT = 0b0100000   # sub/sra/srai
F7_M   = 0b0000001   # M extension

def base_word(opcode: int, funct3: int = 0, funct7: int = 0) -> int:
    return ((funct7 & 0x7f) << 25) | ((funct3 & 0x7) << 12) | (opcode & 0x7f)

I_FUNCTS = {
    # loads
    "lb":    (OP_LOAD, 0b000, 0),
    "lh":    (OP_LOAD, 0b001, 0),
    "lw":    (OP_LOAD, 0b010, 0),
    "ld":    (OP_LOAD, 0b011, 0),
    "lbu":   (OP_LOAD, 0b100, 0),
    "lhu":   (OP_LOAD, 0b101, 0),
    "lwu":   (OP_LOAD, 0b110, 0),
    # arithmetic / logic
    "addi":  (OP_IMM, 0b000, 0),
    "slli":  (OP_IMM, 0b001, 0),
    "slti":  (OP_IMM, 0b010, 0),
    "sltiu": (OP_IMM, 0b011, 0),
    "xori":  (OP_IMM, 0b100, 0),
    "srli":  (OP_IMM, 0b101, 0),
    "srai":  (OP_IMM, 0b101, F7_ALT),
    "ori":   (OP_IMM, 0b110, 0),
    "andi":  (OP_IMM, 0b111, 0),
    # 32-bit word ops
    "addiw": (OP_IMM_32, 0b000, 0),
    "slliw": (OP_IMM_32, 0b001, 0),
    "srliw": (OP_IMM_32, 0b101, 0),
    "sraiw": (OP_IMM_32, 0b101, F7_ALT),
    "jalr":  (OP_JALR, 0b000, 0),
}

U_FUNCTS = {
    "auipc": OP_AUIPC,
    "lui":   OP_LUI,
}

S_FUNCTS = {
    "sb": 0b000,
    "sh": 0b001,
    "sw": 0b010,
    "sd": 0b011,
}

R_FUNCTS = {
    "add":    (OP_R, 0b000, 0),
    "sub":    (OP_R, 0b000, F7_ALT),
    "sll":    (OP_R, 0b001, 0),
    "slt":    (OP_R, 0b010, 0),
    "sltu":   (OP_R, 0b011, 0),
    "xor":    (OP_R, 0b100, 0),
    "srl":    (OP_R, 0b101, 0),
    "sra":    (OP_R, 0b101, F7_ALT),
    "or":     (OP_R, 0b110, 0),
    "and":    (OP_R, 0b111, 0),
    "mul":    (OP_R, 0b000, F7_M),
    "mulh":   (OP_R, 0b001, F7_M),
    "mulhsu": (OP_R, 0b010, F7_M),
    "mulhu":  (OP_R, 0b011, F7_M),
    "div":    (OP_R, 0b100, F7_M),
    "divu":   (OP_R, 0b101, F7_M),
    "rem":    (OP_R, 0b110, F7_M),
    "remu":   (OP_R, 0b111, F7_M),
    "addw":   (OP_R_32, 0b000, 0),
    "subw":   (OP_R_32, 0b000, F7_ALT),
    "sllw":   (OP_R_32, 0b001, 0),
    "srlw":   (OP_R_32, 0b101, 0),
    "sraw":   (OP_R_32, 0b101, F7_ALT),
    "mulw":   (OP_R_32, 0b000, F7_M),
    "divw":   (OP_R_32, 0b100, F7_M),
    "divuw":  (OP_R_32, 0b101, F7_M),
    "remw":   (OP_R_32, 0b110, F7_M),
    "remuw":  (OP_R_32, 0b111, F7_M),
}

B_FUNCTS = {
    "beq":  0b000,
    "bne":  0b001,
    "blt":  0b100,
    "bge":  0b101,
    "bltu": 0b110,
    "bgeu": 0b111,
}

def _build_table() -> Dict[str, Tuple[int, Format]]:
    table: Dict[str, Tuple[int, Format]] = {}
    for name, (op, f3, f7) in I_FUNCTS.items():
        table[name] = (base_word(op, f3, f7), Format.I)
    for name, op in U_FUNCTS.items():
        table[name] = (base_word(op), Format.U)
    for name, f3 in S_FUNCTS.items():
        table[name] = (base_word(OP_STORE, f3), Format.S)
    for name, (op, f3, f7) in R_FUNCTS.items():
        table[name] = (base_word(op, f3, f7), Format.R)
    for name, f3 in B_FUNCTS.items():
        table[name] = (base_word(OP_BRANCH, f3), Format.B)
    table["jal"] = (base_word(OP_JAL), Format.J)
    return table

MNEMONICS: Dict[str, Tuple[int, Format]] = _build_table()

# legacy encodings: mulh shares mulhsu's funct3
LEGACY_MNEMONICS: Dict[str, Tuple[int, Format]] = {
    "mulh": MNEMONICS["mulhsu"],
}

# shamt ranges for shift-immediates, everything else takes a 12-bit immediate
SHAMT_LIMITS = {
    "slli": 63, "srli": 63, "srai": 63,
    "slliw": 31, "srliw": 31, "sraiw": 31,
}

def lookup_mnemonic(mnem: str, legacy: bool = False) -> Tuple[int, Format]:
    m = mnem.lower()
    if legacy and m in LEGACY_MNEMONICS:
        return LEGACY_MNEMONICS[m]
    try:
        return MNEMONICS[m]
    except KeyError:
        raise UnknownMnemonic(f"unrecognized instruction '{mnem}'") from None

# -----------------------------------------------------------------------------
# Immediates and bit utilities
# -----------------------------------------------------------------------------
LABEL_NAME_RE = re.compile(r'^[A-Za-z_.$][A-Za-z0-9_.$]*$')
HEX_DIGITS_RE = re.compile(r'^[0-9A-Fa-f]+$')
DEC_DIGITS_RE = re.compile(r'^[0-9]+$')

def imm_in_range(val: int, bits: int, signed: bool=True) -> bool:
    if signed:
        lo = -(1 << (bits-1))
        hi = (1 << (bits-1)) - 1
        return lo <= val <= hi
    else:
        return 0 <= val <= (1<<bits)-1

def sext(val: int, bits: int) -> int:
    mask = (1<<bits) - 1
    val &= mask
    if val & (1<<(bits-1)):
        val -= (1<<bits)
    return val

def to_hex8(word: int) -> str:
    return format(word & 0xFFFFFFFF, '08X')

def parse_imm(tok: str, symbols: Optional[SymbolTable] = None, current: int = 0, scale: int = 1) -> int:
    """Parse an immediate operand into a signed int.

    ``0x...`` is hex, a leading digit (after an optional ``-``) is decimal,
    anything else is a label resolved to ``(target - current) * scale``.
    """
    t = tok.strip()
    body = t[1:] if t.startswith('-') else t
    if body[:2].lower() == '0x':
        if not HEX_DIGITS_RE.match(body[2:]):
            raise BadImmediate(f"invalid hex immediate '{tok}'")
        val = int(body[2:], 16)
        return -val if t.startswith('-') else val
    if body[:1].isdigit():
        if not DEC_DIGITS_RE.match(body):
            raise BadImmediate(f"invalid decimal immediate '{tok}'")
        val = int(body, 10)
        return -val if t.startswith('-') else val
    if not LABEL_NAME_RE.match(t):
        raise BadImmediate(f"invalid immediate '{tok}'")
    if symbols is None:
        raise BadLabel(f"undefined label '{t}'")
    return (symbols.lookup(t) - current) * scale

# -----------------------------------------------------------------------------
# Immediate splitters (I/S/B/U/J): immediate bits only, OR-ed into the word
# -----------------------------------------------------------------------------
def imm_I(imm):
    return (imm & 0xFFF) << 20

def imm_S(imm):
    imm &= 0xFFF
    imm11_5 = (imm >> 5) & 0x7F
    imm4_0  = imm & 0x1F
    return (imm11_5 << 25) | (imm4_0 << 7)

def imm_B(imm):
    imm = sext(imm, 13)
    b12   = (imm >> 12) & 1
    b10_5 = (imm >> 5) & 0x3f
    b4_1  = (imm >> 1) & 0xf
    b11   = (imm >> 11) & 1
    return (b12 << 31) | (b10_5 << 25) | (b4_1 << 8) | (b11 << 7)

def imm_U(imm):
    return (imm & 0xFFFFF) << 12

def imm_J(imm):
    imm = sext(imm, 21)
    j20    = (imm >> 20) & 1
    j10_1  = (imm >> 1) & 0x3ff
    j11    = (imm >> 11) & 1
    j19_12 = (imm >> 12) & 0xff
    return (j20 << 31) | (j10_1 << 21) | (j11 << 20) | (j19_12 << 12)

# operand count per format
OPERAND_COUNT = {
    Format.R: 3,
    Format.I: 3,
    Format.S: 3,
    Format.B: 3,
    Format.U: 2,
    Format.J: 2,
}

# -----------------------------------------------------------------------------
# Symbol table
# -----------------------------------------------------------------------------
class SymbolTable:
    """Label name -> instruction index. Filled by pass 1, read by pass 2."""

    def __init__(self):
        self._labels: Dict[str, int] = {}

    def insert(self, name: str, index: int):
        if not name:
            raise BadLabel("empty label name")
        if not LABEL_NAME_RE.match(name):
            raise BadLabel(f"invalid label name '{name}'")
        if name in self._labels:
            raise BadLabel(f"duplicate label '{name}'")
        self._labels[name] = index

    def lookup(self, name: str) -> int:
        try:
            return self._labels[name]
        except KeyError:
            raise BadLabel(f"undefined label '{name}'") from None

    def items(self):
        return self._labels.items()

    def __contains__(self, name):
        return name in self._labels

    def __len__(self):
        return len(self._labels)

    def __iter__(self):
        return iter(self._labels)

    def __repr__(self):
        return f"SymbolTable({self._labels!r})"

# -----------------------------------------------------------------------------
# Line parsing
# -----------------------------------------------------------------------------
def split_line(line: str) -> Tuple[Optional[str], List[str]]:
    """Split a source line into (label, tokens).

    Only the first token may be a label. Tokens stop at the first one that
    starts with '#'. An empty token list means the line emits nothing.
    """
    tokens = line.split()
    label = None
    if tokens and tokens[0].endswith(':') and not tokens[0].startswith('#'):
        label = tokens.pop(0)[:-1]
    for k, tok in enumerate(tokens):
        if tok.startswith('#'):
            del tokens[k:]
            break
    return label, tokens

def strip_operand(tok: str) -> str:
    return tok[:-1] if tok.endswith(',') else tok

# -----------------------------------------------------------------------------
# Two-pass assembler
# -----------------------------------------------------------------------------
class Assembler:
    def __init__(self, input_file: Optional[str] = None, output_file: Optional[str] = None,
                 *, byte_offsets: bool = False, legacy: bool = False):
        self.input_file = input_file
        self.output_file = output_file
        self.byte_offsets = byte_offsets
        self.legacy = legacy
        self.symbols = SymbolTable()

    # Pass 1: bind every label to the index of the next emitting line
    def first_pass(self, lines: Iterable[str]) -> SymbolTable:
        self.symbols = SymbolTable()
        i = 1
        for lineno, raw in enumerate(lines, 1):
            label, tokens = split_line(raw)
            if label is not None:
                try:
                    self.symbols.insert(label, i)
                except AsmError as e:
                    e.line = lineno
                    raise
                log.info(f"label: {label:<20} = {i}")
            if tokens:
                i += 1
        return self.symbols

    # Pass 2: encode emitting lines, index restarts at 1
    def second_pass(self, lines: Iterable[str]) -> Iterator[int]:
        i = 1
        for lineno, raw in enumerate(lines, 1):
            try:
                word = self.encode_line(raw, i)
            except AsmError as e:
                e.line, e.index = lineno, i
                raise
            if word is None:
                continue
            log.debug(f"{i:>5}: {to_hex8(word)}  {raw.strip()}")
            yield word
            i += 1

    def assemble(self, lines: Iterable[str]) -> List[int]:
        lines = list(lines)
        self.first_pass(lines)
        return list(self.second_pass(lines))

    def encode_line(self, line: str, index: int) -> Optional[int]:
        """Encode one source line at instruction ``index``; None if it emits nothing."""
        _, tokens = split_line(line)
        if not tokens:
            return None
        mnem, ops = tokens[0], tokens[1:]
        base, fmt = lookup_mnemonic(mnem, self.legacy)
        want = OPERAND_COUNT[fmt]
        if len(ops) < want:
            raise BadOperands(f"{mnem} expects {want} operands, got {len(ops)}")
        if len(ops) > want:
            raise BadOperands(f"unexpected operand '{ops[want]}' after {mnem}")
        ops = [strip_operand(op) for op in ops]

        if fmt is Format.R:
            return base | reg_field(ops[0], 7) | reg_field(ops[1], 15) | reg_field(ops[2], 20)

        if fmt is Format.I:
            regs = reg_field(ops[0], 7) | reg_field(ops[1], 15)
            imm = self._imm(ops[2], index)
            limit = SHAMT_LIMITS.get(mnem.lower())
            if limit is not None:
                if not 0 <= imm <= limit:
                    raise BadImmediate(f"shift amount for {mnem} out of range (0..{limit})")
            elif not -2048 <= imm <= 4095:
                raise BadImmediate(f"immediate out of range for {mnem} (12 bits)")
            return base | regs | imm_I(imm)

        if fmt is Format.S:
            # value register goes in the rs2 field, base register in rs1 (swapped in legacy mode)
            src_at, addr_at = (15, 20) if self.legacy else (20, 15)
            regs = reg_field(ops[0], src_at) | reg_field(ops[1], addr_at)
            imm = self._imm(ops[2], index)
            if not -2048 <= imm <= 4095:
                raise BadImmediate(f"immediate out of range for {mnem} (12 bits)")
            return base | regs | imm_S(imm)

        if fmt is Format.B:
            regs = reg_field(ops[0], 15) | reg_field(ops[1], 20)
            imm = self._imm(ops[2], index)
            if not imm_in_range(imm, 13, signed=True):
                raise BadImmediate(f"branch displacement {imm} out of range")
            return base | regs | imm_B(imm)

        if fmt is Format.U:
            rd = reg_field(ops[0], 7)
            imm = self._imm(ops[1], index)
            if not -(1 << 19) <= imm <= (1 << 20) - 1:
                raise BadImmediate(f"immediate for {mnem} must fit in 20 bits")
            return base | rd | imm_U(imm)

        if fmt is Format.J:
            rd = reg_field(ops[0], 15 if self.legacy else 7)
            imm = self._imm(ops[1], index)
            if not imm_in_range(imm, 21, signed=True):
                raise BadImmediate(f"jump displacement {imm} out of range")
            return base | rd | imm_J(imm)

        raise AssertionError(f"unhandled format {fmt}")

    def _imm(self, tok: str, index: int) -> int:
        return parse_imm(tok, self.symbols, index, 4 if self.byte_offsets else 1)

    # File driver: both files stay open for the whole run and are closed on any exit
    def process(self) -> int:
        if self.input_file is None or self.output_file is None:
            raise AsmIOError("input and output files must be set")
        try:
            fin = open(self.input_file, 'rb')
        except OSError as e:
            raise AsmIOError(f"cannot open input file '{self.input_file}': {e.strerror}") from e
        with fin:
            try:
                fout = open(self.output_file, 'w', encoding='utf-8')
            except OSError as e:
                raise AsmIOError(f"cannot create output file '{self.output_file}': {e.strerror}") from e
            with fout:
                self.first_pass(read_source(fin, self.input_file))
                fin.seek(0)
                count = write_hex(self.second_pass(read_source(fin, self.input_file)), fout)
        log.info(f"assembled {count} instructions -> {self.output_file}")
        return count

def read_source(fin, name: str) -> Iterator[str]:
    """Decode a binary input file line by line so bad bytes report their line."""
    for lineno, raw in enumerate(fin, 1):
        try:
            yield raw.decode('utf-8')
        except UnicodeDecodeError as e:
            raise AsmIOError(f"input file '{name}' is not valid UTF-8 text", line=lineno) from e

def write_hex(words: Iterable[int], out) -> int:
    n = 0
    for w in words:
        out.write(to_hex8(w) + "\n")
        n += 1
    return n

def assemble_text(text: str, **options) -> List[str]:
    """Assemble a source string and return its hex lines (without newlines)."""
    asm = Assembler(**options)
    return [to_hex8(w) for w in asm.assemble(text.splitlines())]

# -----------------------------------------------------------------------------
# CLI
# -----------------------------------------------------------------------------
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Assemble RV64IM source into hex machine code',
        prog='rv64asm',
    )
    parser.add_argument('input', type=str, help='input assembly file')
    parser.add_argument('output', type=str, help='output hex file (one word per line)')
    parser.add_argument('--byte-offsets', action='store_true',
        help='scale label displacements by 4 (RISC-V byte offsets)')
    parser.add_argument('--legacy', action='store_true',
        help='legacy encodings: jal rd at bit 15, mulh as mulhsu, swapped store registers')
    parser.add_argument('-v', '--verbose', action='store_true', help='verbose assembler output')
    return parser

def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    if args.verbose:
        logging.basicConfig(format='%(message)s', level=logging.INFO, stream=sys.stdout)

    asm = Assembler(args.input, args.output, byte_offsets=args.byte_offsets, legacy=args.legacy)
    try:
        asm.process()
    except AsmError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0

def cli_main():
    sys.exit(main())

if __name__ == '__main__':
    cli_main()
