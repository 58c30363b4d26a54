from __future__ import annotations

import pytest

from nfse.utils.validators import (
    check_digit,
    is_repeated_sequence,
    is_valid_cnpj,
    is_valid_cpf,
    only_digits,
    validate_access_key,
    validate_c_nbs,
    validate_c_trib_nac,
    validate_date,
    validate_dps_id,
    validate_monetary,
    validate_municipality_code,
    validate_percent,
)


CPF_FIRST_WEIGHTS = tuple(range(10, 1, -1))


def _single_digit_mutations(digits: str):
    for i, original in enumerate(digits):
        for d in "0123456789":
            if d != original:
                yield digits[:i] + d + digits[i + 1 :]


class TestCpf:
    @pytest.mark.parametrize("cpf", ["11144477735", "52998224725", "39053344705"])
    def test_valid(self, cpf):
        assert is_valid_cpf(cpf)

    def test_punctuation_ignored(self):
        assert is_valid_cpf("111.444.777-35")

    def test_wrong_first_check_digit(self):
        assert not is_valid_cpf("11144477745")

    def test_wrong_second_check_digit(self):
        assert not is_valid_cpf("11144477736")

    @pytest.mark.parametrize("cpf", ["1114447773", "111444777350", ""])
    def test_wrong_length(self, cpf):
        assert not is_valid_cpf(cpf)

    def test_repeated_sequence_rejected_even_with_matching_digits(self):
        # 111.111.111-11 satisfies the modulo-11 arithmetic
        assert check_digit("111111111", tuple(range(10, 1, -1))) == 1
        assert not is_valid_cpf("11111111111")

    @pytest.mark.parametrize("d", "0123456789")
    def test_all_repeated_sequences_rejected(self, d):
        assert not is_valid_cpf(d * 11)

    def test_every_single_digit_mutation_rejected(self):
        survivors = [m for m in _single_digit_mutations("11144477735") if is_valid_cpf(m)]
        assert survivors == []

    def test_collapsing_remainders_let_a_mutation_through(self):
        # remainders 1 and 0 both give first check digit 0; position 0 weighs 11 in the second sum
        assert sum(int(d) * w for d, w in zip("100000001", CPF_FIRST_WEIGHTS)) % 11 == 1
        assert sum(int(d) * w for d, w in zip("200000001", CPF_FIRST_WEIGHTS)) % 11 == 0
        assert is_valid_cpf("10000000108")
        survivors = [m for m in _single_digit_mutations("10000000108") if is_valid_cpf(m)]
        assert "20000000108" in survivors


class TestCnpj:
    @pytest.mark.parametrize("cnpj", ["11222333000181", "11444777000161", "45723174000110"])
    def test_valid(self, cnpj):
        assert is_valid_cnpj(cnpj)

    def test_punctuation_ignored(self):
        assert is_valid_cnpj("11.222.333/0001-81")

    def test_wrong_check_digits(self):
        assert not is_valid_cnpj("11222333000182")
        assert not is_valid_cnpj("11222333000191")

    def test_wrong_length(self):
        assert not is_valid_cnpj("1122233300018")

    @pytest.mark.parametrize("d", "0123456789")
    def test_repeated_sequences_rejected(self, d):
        assert not is_valid_cnpj(d * 14)

    def test_every_single_digit_mutation_rejected(self):
        survivors = [m for m in _single_digit_mutations("11222333000181") if is_valid_cnpj(m)]
        assert survivors == []

    def test_cpf_digits_are_not_a_cnpj(self):
        assert not is_valid_cnpj("11144477735")

    def test_sequential_digits_rejected(self):
        assert not is_valid_cnpj("12345678000190")
        assert is_valid_cnpj("12345678000195")


class TestHelpers:
    def test_only_digits(self):
        assert only_digits("11.222.333/0001-81") == "11222333000181"

    def test_is_repeated_sequence(self):
        assert is_repeated_sequence("0000")
        assert not is_repeated_sequence("0001")
        assert not is_repeated_sequence("")

    def test_check_digit_low_remainder_gives_zero(self):
        # remainder 0 and remainder 1 both map to 0
        assert check_digit("0", (2,)) == 0
        assert check_digit("6", (2,)) == 0


class TestValidateMonetary:
    def test_valid(self):
        assert validate_monetary("19684.93") == "19684.93"

    def test_pads_to_two_decimals(self):
        assert validate_monetary("1000.1") == "1000.10"

    def test_integer_gets_decimals(self):
        assert validate_monetary("500") == "500.00"

    def test_nan_raises(self):
        with pytest.raises(ValueError, match="invalido"):
            validate_monetary("NaN")

    def test_non_numeric_raises(self):
        with pytest.raises(ValueError, match="invalido"):
            validate_monetary("abc")

    def test_zero_raises(self):
        with pytest.raises(ValueError, match="positivo"):
            validate_monetary("0")


class TestValidateDate:
    def test_valid(self):
        assert validate_date("2025-12-30") == "2025-12-30"

    def test_invalid(self):
        with pytest.raises(ValueError, match="Data invalida"):
            validate_date("30/12/2025")


class TestCodes:
    def test_c_trib_nac(self):
        assert validate_c_trib_nac("010101") == "010101"
        with pytest.raises(ValueError, match="6 digitos"):
            validate_c_trib_nac("0101")

    def test_c_nbs(self):
        assert validate_c_nbs("115022000") == "115022000"
        with pytest.raises(ValueError, match="9 digitos"):
            validate_c_nbs("11502200A")

    def test_municipality_code(self):
        assert validate_municipality_code("4205407") == "4205407"
        with pytest.raises(ValueError, match="7 digitos"):
            validate_municipality_code("420540")


class TestValidateAccessKey:
    def test_valid(self):
        key = "4205407" + "11222333000181" + "0" * 29
        assert validate_access_key(key) == key

    def test_too_short(self):
        with pytest.raises(ValueError, match="50 caracteres"):
            validate_access_key("ABC")

    def test_non_alphanumeric(self):
        with pytest.raises(ValueError, match="50 caracteres"):
            validate_access_key("-" * 50)


class TestValidateDpsId:
    def test_valid(self):
        dps_id = "DPS420540721122233300018100900000000000000003"
        assert validate_dps_id(dps_id) == dps_id

    def test_missing_prefix(self):
        with pytest.raises(ValueError, match="DPS"):
            validate_dps_id("420540721122233300018100900000000000000003")


class TestValidatePercent:
    def test_valid(self):
        assert validate_percent("2") == "2.00"

    def test_out_of_range(self):
        with pytest.raises(ValueError, match="entre 0.00 e 100.00"):
            validate_percent("100.01")

    def test_invalid(self):
        with pytest.raises(ValueError, match="Percentual invalido"):
            validate_percent("x")
