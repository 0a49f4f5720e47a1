"""
Tests for diffexp_toolkit.statistical_analysis module
"""

import pandas as pd
import numpy as np
import pytest
from scipy.stats import f_oneway, ttest_ind

from diffexp_toolkit.experimental_design import OMNIBUS, Contrast, IntensityMatrix
from diffexp_toolkit.statistical_analysis import (
    StatisticalConfig,
    DecisionLabel,
    FeatureTestResult,
    CorrectedResult,
    OmnibusResult,
    ContrastResults,
    OneWayAnovaTest,
    TwoSampleTTest,
    ModeratedTTest,
    get_feature_test,
    run_feature_tests,
    benjamini_hochberg,
    adjust_p_values,
    apply_multiple_testing_correction,
    classify_feature,
    apply_decision_rule,
    compute_group_means,
    run_omnibus_pipeline,
    run_contrast_pipeline,
    run_comprehensive_statistical_analysis,
    display_analysis_summary,
    _apply_log_transformation_if_needed,
)
from diffexp_toolkit.validation import ConfigInconsistentError, FailureReason


def _by_feature(results):
    return {r.feature_id: r for r in results}


def _group_values(matrix, assignment, feature_id, group):
    row = matrix.row(feature_id)
    return row[assignment.samples_in(group)].to_numpy()


class TestStatisticalConfig:
    """Test the StatisticalConfig class"""

    def test_config_initialization(self):
        """Test configuration initialization with defaults"""
        config = StatisticalConfig()

        assert config.statistical_test_method == "anova"
        assert config.p_value_threshold == 0.05
        assert config.fold_change_threshold == 0.5
        assert config.correction_method == "fdr_bh"
        assert config.fold_change_basis == "log2"
        assert config.n_jobs == 1
        assert config.validate() is True

    def test_posthoc_alpha_defaults_to_p_threshold(self):
        config = StatisticalConfig()
        config.p_value_threshold = 0.01
        assert config.effective_posthoc_alpha == 0.01

        config.posthoc_alpha = 0.1
        assert config.effective_posthoc_alpha == 0.1

    @pytest.mark.parametrize(
        "attribute,value",
        [
            ("statistical_test_method", "mixed_effects"),
            ("p_value_threshold", 0),
            ("fold_change_threshold", -1),
            ("correction_method", "storey"),
            ("fold_change_basis", "linear"),
            ("min_samples_per_group", 1),
        ],
    )
    def test_invalid_values_rejected(self, attribute, value):
        config = StatisticalConfig()
        setattr(config, attribute, value)
        with pytest.raises(ValueError):
            config.validate()

    def test_from_dict(self):
        config = StatisticalConfig.from_dict({"p_value_threshold": 0.01, "n_jobs": 2})
        assert config.p_value_threshold == 0.01
        assert config.n_jobs == 2
        assert config.to_dict()["fold_change_threshold"] == 0.5

    def test_from_dict_unknown_key(self):
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            StatisticalConfig.from_dict({"q_value_max": 0.1})

    def test_get_feature_test(self):
        config = StatisticalConfig()
        assert isinstance(get_feature_test(config), OneWayAnovaTest)

        config.statistical_test_method = "welch_t"
        test = get_feature_test(config)
        assert isinstance(test, TwoSampleTTest)
        assert test.equal_var is False

        config.statistical_test_method = "moderated_t"
        assert isinstance(get_feature_test(config), ModeratedTTest)


class TestOneWayAnova:
    """Test the omnibus F-test"""

    def test_one_result_per_feature(self, intensity_matrix, group_assignment, statistical_config):
        results = run_feature_tests(
            intensity_matrix, group_assignment, OMNIBUS, statistical_config
        )

        assert [r.feature_id for r in results] == intensity_matrix.feature_ids
        assert all(r.contrast == OMNIBUS for r in results)
        assert all(r.test_method == "One-way ANOVA" for r in results)

    def test_matches_scipy_f_oneway(self, intensity_matrix, group_assignment, statistical_config):
        results = _by_feature(
            run_feature_tests(intensity_matrix, group_assignment, OMNIBUS, statistical_config)
        )

        samples = [
            _group_values(intensity_matrix, group_assignment, "NULL000", g)
            for g in group_assignment.groups
        ]
        expected = f_oneway(*samples)

        assert results["NULL000"].statistic == pytest.approx(expected.statistic, rel=1e-6)
        assert results["NULL000"].p_value == pytest.approx(expected.pvalue, rel=1e-6)
        assert results["NULL000"].df == 36

    def test_de_feature_effect_size(self, intensity_matrix, group_assignment, statistical_config):
        results = _by_feature(
            run_feature_tests(intensity_matrix, group_assignment, OMNIBUS, statistical_config)
        )

        de = results["DE_ADULT"]
        assert de.p_value < 1e-10
        assert de.effect_size == pytest.approx(5.0, abs=1e-9)
        assert de.group_means["adult"] == pytest.approx(25.0, abs=1e-9)
        assert de.group_sizes == {"control": 10, "lessone": 10, "onetofive": 10, "adult": 10}

    def test_failures_are_reported_not_raised(
        self, matrix_with_failures, group_assignment, statistical_config
    ):
        results = _by_feature(
            run_feature_tests(matrix_with_failures, group_assignment, OMNIBUS, statistical_config)
        )

        assert results["CONSTANT"].failure is FailureReason.UNDEFINED_STATISTIC
        assert results["SPARSE"].failure is FailureReason.INSUFFICIENT_DATA
        assert np.isnan(results["SPARSE"].p_value)
        assert results["SPARSE"].group_sizes["adult"] == 1
        assert not results["DE_ADULT"].is_failed

    def test_rejects_pairwise_contrast(self, intensity_matrix, group_assignment):
        with pytest.raises(ValueError, match="omnibus"):
            OneWayAnovaTest().run(
                intensity_matrix, group_assignment, Contrast.pairwise("adult", "control")
            )


class TestTwoSampleTTest:
    """Test Student and Welch t-tests"""

    def test_matches_scipy_ttest(self, intensity_matrix, group_assignment, t_test_config):
        contrast = Contrast.pairwise("adult", "control")
        results = _by_feature(
            run_feature_tests(intensity_matrix, group_assignment, contrast, t_test_config)
        )

        a = _group_values(intensity_matrix, group_assignment, "NULL005", "adult")
        b = _group_values(intensity_matrix, group_assignment, "NULL005", "control")
        expected = ttest_ind(a, b, equal_var=True)

        res = results["NULL005"]
        assert res.statistic == pytest.approx(expected.statistic, rel=1e-9)
        assert res.p_value == pytest.approx(expected.pvalue, rel=1e-9)
        assert res.df == 18
        assert res.effect_size == pytest.approx(a.mean() - b.mean())
        assert set(res.group_means) == {"adult", "control"}

    def test_welch_label(self, intensity_matrix, group_assignment, t_test_config):
        test = TwoSampleTTest(equal_var=False)
        results = test.run(
            intensity_matrix, group_assignment, Contrast.pairwise("adult", "control"), t_test_config
        )
        assert results[0].test_method == "Welch t-test"

    def test_reversed_contrast_is_symmetric(self, intensity_matrix, group_assignment, t_test_config):
        forward = Contrast.pairwise("adult", "control")
        results_ab = run_feature_tests(intensity_matrix, group_assignment, forward, t_test_config)
        results_ba = run_feature_tests(
            intensity_matrix, group_assignment, forward.reversed(), t_test_config
        )

        for ab, ba in zip(results_ab, results_ba):
            assert ab.p_value == pytest.approx(ba.p_value, rel=1e-12)
            assert ab.effect_size == pytest.approx(-ba.effect_size, abs=1e-12)

    def test_requires_pairwise_contrast(self, intensity_matrix, group_assignment, t_test_config):
        contrast = Contrast.from_coefficients({"adult": 1, "control": -0.5, "lessone": -0.5})
        with pytest.raises(ValueError, match="pairwise"):
            run_feature_tests(intensity_matrix, group_assignment, contrast, t_test_config)

    def test_failures(self, matrix_with_failures, group_assignment, t_test_config):
        results = _by_feature(
            run_feature_tests(
                matrix_with_failures,
                group_assignment,
                Contrast.pairwise("adult", "control"),
                t_test_config,
            )
        )
        assert results["CONSTANT"].failure is FailureReason.UNDEFINED_STATISTIC
        assert results["SPARSE"].failure is FailureReason.INSUFFICIENT_DATA

    def test_missing_values_only_affect_contrasts_that_use_them(
        self, matrix_with_failures, group_assignment, t_test_config
    ):
        results = _by_feature(
            run_feature_tests(
                matrix_with_failures,
                group_assignment,
                Contrast.pairwise("lessone", "control"),
                t_test_config,
            )
        )
        assert not results["SPARSE"].is_failed
        assert results["SPARSE"].effect_size == pytest.approx(1.0, abs=1e-9)


class TestModeratedTTest:
    """Test the empirical-Bayes moderated t-test"""

    def test_detects_de_feature(self, intensity_matrix, group_assignment):
        config = StatisticalConfig()
        config.statistical_test_method = "moderated_t"
        results = _by_feature(
            run_feature_tests(
                intensity_matrix, group_assignment, Contrast.pairwise("adult", "control"), config
            )
        )

        de = results["DE_ADULT"]
        assert de.p_value < 1e-10
        assert de.effect_size == pytest.approx(5.0, abs=1e-9)
        assert de.test_method == "Moderated t-test (eBayes)"
        assert de.df > 36 or np.isinf(de.df)

    def test_general_contrast(self, intensity_matrix, group_assignment):
        config = StatisticalConfig()
        contrast = Contrast.from_coefficients(
            {"adult": 1.0, "control": -0.5, "lessone": -0.5}, name="adult_vs_young"
        )
        results = _by_feature(
            ModeratedTTest().run(intensity_matrix, group_assignment, contrast, config)
        )

        assert results["DE_ADULT"].contrast == "adult_vs_young"
        assert results["DE_ADULT"].effect_size == pytest.approx(5.0, abs=1e-9)
        assert results["DE_LESSONE"].effect_size == pytest.approx(-1.0, abs=1e-9)

    def test_failures(self, matrix_with_failures, group_assignment):
        results = _by_feature(
            ModeratedTTest().run(
                matrix_with_failures,
                group_assignment,
                Contrast.pairwise("adult", "control"),
                StatisticalConfig(),
            )
        )
        assert results["CONSTANT"].failure is FailureReason.UNDEFINED_STATISTIC
        assert results["SPARSE"].failure is FailureReason.INSUFFICIENT_DATA

    def test_too_few_features_disables_moderation(self, intensity_matrix, group_assignment):
        small = intensity_matrix.subset(["NULL000", "NULL001"])
        with pytest.warns(UserWarning, match="moderation disabled"):
            results = ModeratedTTest().run(
                small, group_assignment, Contrast.pairwise("adult", "control"), StatisticalConfig()
            )
        assert all(r.df == 36 for r in results)

    @pytest.mark.parametrize("method", ["student_t", "welch_t", "moderated_t"])
    def test_unknown_label_is_config_error(self, intensity_matrix, group_assignment, method):
        config = StatisticalConfig()
        config.statistical_test_method = method
        with pytest.raises(ConfigInconsistentError, match="unknown group labels"):
            run_feature_tests(
                intensity_matrix, group_assignment, Contrast.pairwise("adult", "infant"), config
            )

    def test_reversed_contrast_is_symmetric(self, intensity_matrix, group_assignment):
        forward = Contrast.pairwise("adult", "control")
        test = ModeratedTTest()
        results_ab = test.run(intensity_matrix, group_assignment, forward, StatisticalConfig())
        results_ba = test.run(
            intensity_matrix, group_assignment, forward.reversed(), StatisticalConfig()
        )

        for ab, ba in zip(results_ab, results_ba):
            assert ab.feature_id == ba.feature_id
            assert ab.p_value == pytest.approx(ba.p_value, rel=1e-12)
            assert ab.statistic == pytest.approx(-ba.statistic, rel=1e-12)
            assert ab.effect_size == pytest.approx(-ba.effect_size, abs=1e-12)


class TestMultipleTestingCorrection:
    """Test Benjamini-Hochberg correction"""

    def test_known_values(self):
        adjusted = benjamini_hochberg([0.01, 0.04, 0.03, 0.005])
        np.testing.assert_allclose(adjusted, [0.02, 0.04, 0.04, 0.02])

    def test_nan_excluded_from_m(self):
        adjusted = benjamini_hochberg([0.01, np.nan, 0.02])
        assert np.isnan(adjusted[1])
        np.testing.assert_allclose(adjusted[[0, 2]], [0.02, 0.02])

    def test_all_nan(self):
        assert np.isnan(benjamini_hochberg([np.nan, np.nan])).all()

    def test_adjusted_not_below_raw_and_monotone(self):
        rng = np.random.default_rng(7)
        p = rng.uniform(size=200) ** 2
        adjusted = benjamini_hochberg(p)

        assert np.all(adjusted >= p - 1e-15)
        assert np.all(adjusted <= 1.0)
        order = np.argsort(p)
        assert np.all(np.diff(adjusted[order]) >= -1e-15)

    def test_fdr_controlled_under_global_null(self):
        """Under the global null, P(any discovery) should be near alpha"""
        rng = np.random.default_rng(0)
        n_features = 146
        n_runs = 500

        runs_with_discovery = 0
        for _ in range(n_runs):
            adjusted = benjamini_hochberg(rng.uniform(size=n_features))
            if (adjusted <= 0.05).any():
                runs_with_discovery += 1

        assert runs_with_discovery / n_runs <= 0.08

    def test_no_correction(self):
        p = [0.01, np.nan, 0.2]
        adjusted = adjust_p_values(p, method="none")
        assert adjusted[0] == 0.01
        assert np.isnan(adjusted[1])

    def test_failed_results_excluded(
        self, matrix_with_failures, group_assignment, statistical_config
    ):
        raw = run_feature_tests(
            matrix_with_failures, group_assignment, OMNIBUS, statistical_config
        )
        corrected = _by_feature(apply_multiple_testing_correction(raw, statistical_config))

        valid = [r for r in raw if not r.is_failed]
        expected = benjamini_hochberg([r.p_value for r in valid])

        assert np.isnan(corrected["CONSTANT"].adj_p_value)
        assert np.isnan(corrected["SPARSE"].adj_p_value)
        for r, adj in zip(valid, expected):
            assert corrected[r.feature_id].adj_p_value == pytest.approx(adj)

    def test_refuses_to_pool_contrasts(self):
        results = [
            FeatureTestResult("F1", "a_vs_b", "Student t-test", p_value=0.01),
            FeatureTestResult("F1", "b_vs_c", "Student t-test", p_value=0.02),
        ]
        with pytest.raises(ValueError, match="per contrast"):
            apply_multiple_testing_correction(results)


class TestDecisionRule:
    """Test the adjusted-p / fold-change filter"""

    @staticmethod
    def _corrected(adj_p, effect, failure=None):
        res = FeatureTestResult(
            "F1", "a_vs_b", "Student t-test", p_value=0.001, effect_size=effect, failure=failure
        )
        return CorrectedResult(result=res, adj_p_value=adj_p)

    @pytest.mark.parametrize(
        "adj_p,effect,expected",
        [
            (0.05, 0.5, DecisionLabel.DIFFERENTIALLY_EXPRESSED),
            (0.05, -0.5, DecisionLabel.DIFFERENTIALLY_EXPRESSED),
            (0.0501, 0.5, DecisionLabel.NOT_SIGNIFICANT),
            (0.05, 0.4999, DecisionLabel.NOT_SIGNIFICANT),
            (0.001, 3.0, DecisionLabel.DIFFERENTIALLY_EXPRESSED),
            (0.5, 3.0, DecisionLabel.NOT_SIGNIFICANT),
        ],
    )
    def test_inclusive_thresholds(self, adj_p, effect, expected):
        assert classify_feature(self._corrected(adj_p, effect), StatisticalConfig()) is expected

    def test_failed_is_untestable(self):
        corrected = self._corrected(np.nan, np.nan, failure=FailureReason.INSUFFICIENT_DATA)
        assert classify_feature(corrected) is DecisionLabel.UNTESTABLE

    def test_custom_thresholds(self):
        config = StatisticalConfig()
        config.p_value_threshold = 0.01
        config.fold_change_threshold = 1.0

        assert classify_feature(self._corrected(0.02, 2.0), config) is DecisionLabel.NOT_SIGNIFICANT
        assert classify_feature(self._corrected(0.01, 1.0), config) is (
            DecisionLabel.DIFFERENTIALLY_EXPRESSED
        )

    def test_apply_decision_rule(self):
        table = apply_decision_rule([self._corrected(0.01, 1.0)])
        assert table == {"F1": DecisionLabel.DIFFERENTIALLY_EXPRESSED}


class TestGroupMeans:
    def test_compute_group_means(self, intensity_matrix, group_assignment):
        means = compute_group_means(intensity_matrix, group_assignment)

        assert list(means.columns) == group_assignment.groups
        assert means.loc["DE_ADULT", "adult"] == pytest.approx(25.0)
        assert means.loc["DE_LESSONE", "lessone"] == pytest.approx(22.0)


class TestOmnibusPipeline:
    """Test ANOVA -> BH -> decision -> Tukey"""

    def test_detects_planted_features(self, intensity_matrix, group_assignment, statistical_config):
        result = run_omnibus_pipeline(
            intensity_matrix, group_assignment, statistical_config, verbose=False
        )

        assert isinstance(result, OmnibusResult)
        assert result.pipeline == "omnibus"
        assert result.contrast == OMNIBUS
        assert set(result.significant_ids) == {"DE_ADULT", "DE_LESSONE"}
        assert result.significant_ids[0] in {"DE_ADULT", "DE_LESSONE"}

    def test_posthoc_only_for_hits(self, intensity_matrix, group_assignment, statistical_config):
        result = run_omnibus_pipeline(
            intensity_matrix, group_assignment, statistical_config, verbose=False
        )

        assert set(result.posthoc) == set(result.significant_ids)
        table = result.posthoc_table()
        assert set(table["Protein"]) == {"DE_ADULT", "DE_LESSONE"}
        assert len(table) == 12  # 2 features x C(4, 2) pairs

    def test_posthoc_can_be_disabled(self, intensity_matrix, group_assignment, statistical_config):
        result = run_omnibus_pipeline(
            intensity_matrix, group_assignment, statistical_config, run_posthoc=False,
            verbose=False,
        )
        assert result.posthoc == {}

    def test_dataframe_output(self, matrix_with_failures, group_assignment, statistical_config):
        result = run_omnibus_pipeline(
            matrix_with_failures, group_assignment, statistical_config, verbose=False
        )
        df = result.to_dataframe()

        for col in ["Protein", "Contrast", "Pipeline", "mean_control", "mean_adult", "logFC",
                    "statistic", "P.Value", "adj.P.Val", "Decision", "Failure", "test_method"]:
            assert col in df.columns
        assert (df["Pipeline"] == "omnibus").all()
        assert len(df) == len(matrix_with_failures)

        failed = result.failed()
        assert set(failed["Protein"]) == {"CONSTANT", "SPARSE"}
        assert set(failed["Failure"]) == {"UNDEFINED_STATISTIC", "INSUFFICIENT_DATA"}
        assert result.decisions["CONSTANT"] is DecisionLabel.UNTESTABLE

        significant = result.significant()
        assert set(significant["Protein"]) == {"DE_ADULT", "DE_LESSONE"}

    def test_effect_matrix(self, expression_data, group_assignment, statistical_config):
        result = run_omnibus_pipeline(
            expression_data,
            group_assignment,
            statistical_config,
            effect_matrix=expression_data * 2,
            run_posthoc=False,
            verbose=False,
        )
        res = {r.feature_id: r for r in result.results}
        assert res["DE_ADULT"].effect_size == pytest.approx(10.0, abs=1e-9)

    def test_effect_matrix_shape_mismatch(self, expression_data, group_assignment):
        with pytest.raises(ValueError, match="same features and samples"):
            run_omnibus_pipeline(
                expression_data,
                group_assignment,
                effect_matrix=expression_data.iloc[:5],
                verbose=False,
            )

    def test_group_order_from_config(self, intensity_matrix, group_assignment, statistical_config):
        statistical_config.group_order = ["adult", "onetofive", "lessone", "control"]
        result = run_omnibus_pipeline(
            intensity_matrix, group_assignment, statistical_config, run_posthoc=False,
            verbose=False,
        )
        assert result.groups == ("adult", "onetofive", "lessone", "control")

    def test_idempotent(self, intensity_matrix, group_assignment, statistical_config):
        first = run_omnibus_pipeline(
            intensity_matrix, group_assignment, statistical_config, verbose=False
        )
        second = run_omnibus_pipeline(
            intensity_matrix, group_assignment, statistical_config, verbose=False
        )
        pd.testing.assert_frame_equal(first.to_dataframe(), second.to_dataframe())
        pd.testing.assert_frame_equal(first.posthoc_table(), second.posthoc_table())


class TestContrastPipeline:
    """Test per-contrast t-test -> BH -> decision"""

    def test_all_pairwise_by_default(self, intensity_matrix, group_assignment, t_test_config):
        results = run_contrast_pipeline(
            intensity_matrix, group_assignment, config=t_test_config, verbose=False
        )

        assert isinstance(results, ContrastResults)
        assert results.contrasts == [
            "lessone_vs_control",
            "onetofive_vs_control",
            "adult_vs_control",
            "onetofive_vs_lessone",
            "adult_vs_lessone",
            "adult_vs_onetofive",
        ]
        assert results["adult_vs_control"].significant_ids == ["DE_ADULT"]
        assert results["lessone_vs_control"].significant_ids == ["DE_LESSONE"]
        assert results["onetofive_vs_control"].significant_ids == []
        assert set(results["adult_vs_lessone"].significant_ids) == {"DE_ADULT", "DE_LESSONE"}

    def test_pipeline_tag(self, intensity_matrix, group_assignment, t_test_config):
        results = run_contrast_pipeline(
            intensity_matrix, group_assignment, ["adult-control"], t_test_config, verbose=False
        )
        df = results.to_dataframe()

        assert results.pipeline == "pairwise"
        assert (df["Pipeline"] == "pairwise").all()
        assert (df["Contrast"] == "adult_vs_control").all()

    def test_direction_of_fold_change(self, intensity_matrix, group_assignment, t_test_config):
        results = run_contrast_pipeline(
            intensity_matrix,
            group_assignment,
            [("control", "adult")],
            t_test_config,
            verbose=False,
        )
        sig = results["control_vs_adult"].significant()
        assert sig.loc[0, "Protein"] == "DE_ADULT"
        assert sig.loc[0, "logFC"] == pytest.approx(-5.0, abs=1e-9)

    def test_unknown_label_raises_before_testing(
        self, intensity_matrix, group_assignment, t_test_config, capsys
    ):
        with pytest.raises(ConfigInconsistentError, match="unknown group labels"):
            run_contrast_pipeline(
                intensity_matrix,
                group_assignment,
                ["adult-control", "adult-infant"],
                t_test_config,
            )
        assert "Running pairwise" not in capsys.readouterr().out

    def test_omnibus_test_rejected(self, intensity_matrix, group_assignment, statistical_config):
        with pytest.raises(ValueError, match="run_omnibus_pipeline"):
            run_contrast_pipeline(
                intensity_matrix, group_assignment, config=statistical_config, verbose=False
            )

    def test_contrasts_from_config(self, intensity_matrix, group_assignment, t_test_config):
        t_test_config.contrasts = ["lessone-control"]
        results = run_contrast_pipeline(
            intensity_matrix, group_assignment, config=t_test_config, verbose=False
        )
        assert results.contrasts == ["lessone_vs_control"]

    def test_parallel_matches_sequential(self, intensity_matrix, group_assignment, t_test_config):
        sequential = run_contrast_pipeline(
            intensity_matrix, group_assignment, ["adult-control"], t_test_config, verbose=False
        )
        t_test_config.n_jobs = 2
        parallel = run_contrast_pipeline(
            intensity_matrix, group_assignment, ["adult-control"], t_test_config, verbose=False
        )
        pd.testing.assert_frame_equal(sequential.to_dataframe(), parallel.to_dataframe())

    def test_moderated_pipeline(self, matrix_with_failures, group_assignment):
        config = StatisticalConfig()
        config.statistical_test_method = "moderated_t"
        results = run_contrast_pipeline(
            matrix_with_failures, group_assignment, ["adult-control"], config, verbose=False
        )
        result = results["adult_vs_control"]

        assert result.test_method == "moderated_t"
        assert result.significant_ids == ["DE_ADULT"]
        assert result.n_failed == 2


class TestComprehensiveAnalysis:
    """Test run_comprehensive_statistical_analysis dispatch and pre-processing"""

    def test_raw_scale_is_log_transformed(self, expression_data, group_assignment, statistical_config):
        raw = 2 ** expression_data
        result = run_comprehensive_statistical_analysis(
            raw, group_assignment, statistical_config, verbose=False
        )
        assert isinstance(result, OmnibusResult)
        assert set(result.significant_ids) == {"DE_ADULT", "DE_LESSONE"}

    def test_pairwise_dispatch(self, intensity_matrix, group_assignment, t_test_config):
        results = run_comprehensive_statistical_analysis(
            intensity_matrix, group_assignment, t_test_config, contrasts=["adult-control"],
            verbose=False,
        )
        assert isinstance(results, ContrastResults)
        assert results.contrasts == ["adult_vs_control"]

    def test_scaled_test_matrix_log2_fold_change(
        self, expression_data, group_assignment, statistical_config
    ):
        statistical_config.log_transform_before_stats = False
        statistical_config.scale_before_stats = True
        result = run_comprehensive_statistical_analysis(
            expression_data, group_assignment, statistical_config, verbose=False
        )
        res = {r.feature_id: r for r in result.results}

        assert result.fold_change_basis == "log2"
        assert "DE_ADULT" in result.significant_ids
        assert res["DE_ADULT"].effect_size == pytest.approx(5.0, abs=1e-6)
        # Tukey intervals stay on the tested (scaled) matrix
        assert result.posthoc["DE_ADULT"].basis == "scaled"
        assert set(result.posthoc_table()["basis"]) == {"scaled"}

    def test_invalid_config(self, intensity_matrix, group_assignment):
        config = StatisticalConfig()
        config.statistical_test_method = "wilcoxon"
        with pytest.raises(ValueError, match="Configuration error"):
            run_comprehensive_statistical_analysis(
                intensity_matrix, group_assignment, config, verbose=False
            )


class TestLogTransformation:
    def test_auto_skips_log_scale_data(self, expression_data, statistical_config):
        result = _apply_log_transformation_if_needed(
            expression_data, statistical_config, verbose=False
        )
        pd.testing.assert_frame_equal(result, expression_data)

    def test_forced(self, expression_data, statistical_config):
        statistical_config.log_transform_before_stats = True
        statistical_config.log_pseudocount = 0.0
        result = _apply_log_transformation_if_needed(
            expression_data, statistical_config, verbose=False
        )
        np.testing.assert_allclose(result.to_numpy(), np.log2(expression_data.to_numpy()))

    def test_negative_values_rejected(self, expression_data, statistical_config):
        statistical_config.log_transform_before_stats = True
        with pytest.raises(ValueError, match="negative"):
            _apply_log_transformation_if_needed(expression_data - 25, statistical_config)


class TestDisplaySummary:
    def test_summary_omnibus(self, matrix_with_failures, group_assignment, statistical_config,
                             capsys):
        result = run_omnibus_pipeline(
            matrix_with_failures, group_assignment, statistical_config, verbose=False
        )
        summary = display_analysis_summary(result, statistical_config)
        out = capsys.readouterr().out

        assert "STATISTICAL ANALYSIS SUMMARY" in out
        assert "INSUFFICIENT_DATA" in out
        assert summary[OMNIBUS]["differentially_expressed"] == 2
        assert summary[OMNIBUS]["failed"] == 2

    def test_summary_contrasts(self, intensity_matrix, group_assignment, t_test_config, capsys):
        results = run_contrast_pipeline(
            intensity_matrix, group_assignment, ["adult-control"], t_test_config, verbose=False
        )
        summary = display_analysis_summary(results)

        assert summary["adult_vs_control"]["up"] == 1
        assert summary["adult_vs_control"]["down"] == 0


def test_intensity_matrix_accepted_as_dataframe(expression_data, group_assignment):
    result = run_omnibus_pipeline(
        expression_data, group_assignment, run_posthoc=False, verbose=False
    )
    assert result.n_features == len(IntensityMatrix(expression_data))
