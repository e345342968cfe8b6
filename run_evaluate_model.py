from gatherdata import *
from modeleval import *
from varsel import *


in_dir = './data/input/'
gather_path = in_dir + 'gather.csv'
out_dir = './figs/'
class_col = 'site_class'  # character column holding the class labels

gather = read_gather(gather_path)
gather = gather.dropna()
x = gather.select_dtypes(include=np.number)
y = gather[class_col]

rng = np.random.default_rng(42)
train = rng.random(x.shape[0]) < 0.7

vita = VitaHandler(rf_kwargs={'ntree': 1000, 'mtry_prop': 0.3, 'nodesize_prop': 0.01, 'no_threads': 4, 'treetype': 'classification', 'importance': 'permutation'})
optimal_ranger = vita.wrapper_rf(x[train], y[train], rng=rng)
print(f' Out of bag misclassification: {optimal_ranger.prediction_error:0.3f}')

fig = evaluate_model(optimal_ranger, x[~train], y[~train], plt_title=f'{class_col}, held-out reaches')
fig.savefig(out_dir + 'confusion_matrix.tif', dpi=300, bbox_inches='tight')
