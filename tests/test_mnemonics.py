import pytest

from rv64_assembler import (
    MNEMONICS, Format, UnknownMnemonic, assemble_text, lookup_mnemonic,
)

# known base words (opcode | funct3 | funct7), RV64I + M
KNOWN = {
    "lb": (0x00000003, Format.I), "lh": (0x00001003, Format.I),
    "lw": (0x00002003, Format.I), "ld": (0x00003003, Format.I),
    "lbu": (0x00004003, Format.I), "lhu": (0x00005003, Format.I),
    "lwu": (0x00006003, Format.I),
    "addi": (0x00000013, Format.I), "slli": (0x00001013, Format.I),
    "slti": (0x00002013, Format.I), "sltiu": (0x00003013, Format.I),
    "xori": (0x00004013, Format.I), "srli": (0x00005013, Format.I),
    "srai": (0x40005013, Format.I), "ori": (0x00006013, Format.I),
    "andi": (0x00007013, Format.I),
    "addiw": (0x0000001B, Format.I), "slliw": (0x0000101B, Format.I),
    "srliw": (0x0000501B, Format.I), "sraiw": (0x4000501B, Format.I),
    "jalr": (0x00000067, Format.I),
    "auipc": (0x00000017, Format.U), "lui": (0x00000037, Format.U),
    "sb": (0x00000023, Format.S), "sh": (0x00001023, Format.S),
    "sw": (0x00002023, Format.S), "sd": (0x00003023, Format.S),
    "add": (0x00000033, Format.R), "sub": (0x40000033, Format.R),
    "sll": (0x00001033, Format.R), "slt": (0x00002033, Format.R),
    "sltu": (0x00003033, Format.R), "xor": (0x00004033, Format.R),
    "srl": (0x00005033, Format.R), "sra": (0x40005033, Format.R),
    "or": (0x00006033, Format.R), "and": (0x00007033, Format.R),
    "mul": (0x02000033, Format.R), "mulh": (0x02001033, Format.R),
    "mulhsu": (0x02002033, Format.R), "mulhu": (0x02003033, Format.R),
    "div": (0x02004033, Format.R), "divu": (0x02005033, Format.R),
    "rem": (0x02006033, Format.R), "remu": (0x02007033, Format.R),
    "addw": (0x0000003B, Format.R), "subw": (0x4000003B, Format.R),
    "sllw": (0x0000103B, Format.R), "srlw": (0x0000503B, Format.R),
    "sraw": (0x4000503B, Format.R), "mulw": (0x0200003B, Format.R),
    "divw": (0x0200403B, Format.R), "divuw": (0x0200503B, Format.R),
    "remw": (0x0200603B, Format.R), "remuw": (0x0200703B, Format.R),
    "beq": (0x00000063, Format.B), "bne": (0x00001063, Format.B),
    "blt": (0x00004063, Format.B), "bge": (0x00005063, Format.B),
    "bltu": (0x00006063, Format.B), "bgeu": (0x00007063, Format.B),
    "jal": (0x0000006F, Format.J),
}


def test_table_covers_exactly_the_known_set():
    assert set(MNEMONICS) == set(KNOWN)


@pytest.mark.parametrize("mnem", sorted(KNOWN))
def test_base_words(mnem):
    assert lookup_mnemonic(mnem) == KNOWN[mnem]


@pytest.mark.parametrize("mnem", sorted(KNOWN))
def test_zero_operand_line_encodes_to_base_word(mnem):
    base, fmt = KNOWN[mnem]
    if fmt in (Format.U, Format.J):
        line = f"{mnem} x0, 0"
    else:
        line = f"{mnem} x0, x0, 0" if fmt is not Format.R else f"{mnem} x0, x0, x0"
    assert assemble_text(line) == [f"{base:08X}"]


def test_lookup_is_case_insensitive():
    assert lookup_mnemonic("ADDI") == KNOWN["addi"]


def test_mulh_legacy_shares_mulhsu():
    assert lookup_mnemonic("mulh", legacy=True) == KNOWN["mulhsu"]
    assert lookup_mnemonic("mulhsu", legacy=True) == KNOWN["mulhsu"]


@pytest.mark.parametrize("mnem", ["nop", "li", "fadd.s", "ecall", "lr.w"])
def test_unknown_mnemonic(mnem):
    with pytest.raises(UnknownMnemonic):
        lookup_mnemonic(mnem)
